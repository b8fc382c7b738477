# tests/test_gate_api.py
import json
from unittest.mock import MagicMock

import pytest
import requests

from signalbridge.errors import (
    ExchangeAuthError,
    ExchangeError,
    ExchangeTimeout,
    ExchangeValidationError,
    RateLimitError,
)
from signalbridge.gate_api import GateClient, format_symbol, map_futures_position
from signalbridge.signing import GateSigner


def _response(status=200, payload=None, text=None):
    r = MagicMock()
    r.status_code = status
    r.text = text if text is not None else ("" if payload is None else json.dumps(payload))
    return r


@pytest.fixture
def session():
    s = MagicMock()
    s.request.return_value = _response(200, [])
    return s


@pytest.fixture
def gate(session):
    return GateClient("key-1", "secret-1", base_url="https://api.gateio.ws/api/v4", session=session)


def test_private_request_is_signed_over_sorted_query(gate, session, monkeypatch):
    monkeypatch.setattr("signalbridge.signing.time.time", lambda: 1700000000)
    gate.request("GET", "/spot/orders", params={"status": "open", "currency_pair": "BTC_USDT", "page": None})

    method, url = session.request.call_args.args
    headers = session.request.call_args.kwargs["headers"]
    assert method == "GET"
    assert url == "https://api.gateio.ws/api/v4/spot/orders?currency_pair=BTC_USDT&status=open"
    assert headers["KEY"] == "key-1"
    assert headers["Timestamp"] == "1700000000"
    assert headers["SIGN"] == GateSigner().sign(
        "GET", "/api/v4/spot/orders", "currency_pair=BTC_USDT&status=open", "", "secret-1", "1700000000"
    )


def test_body_is_serialised_once_and_signed_as_sent(gate, session, monkeypatch):
    monkeypatch.setattr("signalbridge.signing.time.time", lambda: 1700000000)
    session.request.return_value = _response(201, {"id": 1})
    gate.create_futures_order("BTC_USDT", -3)

    kwargs = session.request.call_args.kwargs
    sent = kwargs["data"]
    assert json.loads(sent) == {"contract": "BTC_USDT", "size": -3, "price": "0", "tif": "ioc", "text": "t-webhook"}
    assert kwargs["headers"]["SIGN"] == GateSigner().sign(
        "POST", "/api/v4/futures/usdt/orders", "", sent, "secret-1", "1700000000"
    )
    assert kwargs["timeout"] == 10


def test_public_request_is_unsigned(session):
    gate = GateClient(session=session)
    session.request.return_value = _response(200, [{"currency_pair": "BTC_USDT", "last": "42000"}])

    assert gate.get_ticker("BTC_USDT")["last"] == "42000"
    headers = session.request.call_args.kwargs["headers"]
    assert "SIGN" not in headers and "KEY" not in headers


def test_private_request_without_credentials_fails(session):
    with pytest.raises(ExchangeAuthError):
        GateClient(session=session).get_spot_accounts()
    session.request.assert_not_called()


@pytest.mark.parametrize(
    "status,exc",
    [(429, RateLimitError), (401, ExchangeAuthError), (403, ExchangeAuthError), (400, ExchangeValidationError), (500, ExchangeError)],
)
def test_error_statuses_map_to_typed_errors(gate, session, status, exc):
    session.request.return_value = _response(status, {"label": "INVALID_KEY", "message": "Invalid key provided"})
    with pytest.raises(exc) as info:
        gate.get_spot_accounts()
    assert info.value.status == status
    assert info.value.label == "INVALID_KEY"
    assert info.value.message == "Invalid key provided"


def test_timeout_and_transport_errors(gate, session):
    session.request.side_effect = requests.Timeout("slow")
    with pytest.raises(ExchangeTimeout):
        gate.get_futures_account()

    session.request.side_effect = requests.ConnectionError("down")
    with pytest.raises(ExchangeError) as info:
        gate.get_futures_account()
    assert info.value.status is None


def test_no_automatic_retry(gate, session):
    session.request.return_value = _response(429, {"label": "TOO_MANY_REQUESTS"})
    with pytest.raises(RateLimitError):
        gate.create_futures_order("BTC_USDT", 1)
    assert session.request.call_count == 1


def test_empty_and_malformed_bodies(gate, session):
    session.request.return_value = _response(200, text="")
    assert gate.request("DELETE", "/spot/orders/1", params={"currency_pair": "BTC_USDT"}) is None

    session.request.return_value = _response(200, text="<html>oops</html>")
    with pytest.raises(ExchangeError):
        gate.request("GET", "/spot/accounts")


def test_set_leverage_puts_leverage_in_query(gate, session):
    session.request.return_value = _response(200, {"leverage": "5"})
    gate.set_leverage("BTC_USDT", 5)
    method, url = session.request.call_args.args
    assert method == "POST"
    assert url.endswith("/futures/usdt/positions/BTC_USDT/leverage?leverage=5")


def test_create_spot_order_validates(gate, session):
    with pytest.raises(ValueError):
        gate.create_spot_order("BTC_USDT", "hold", 1)
    with pytest.raises(ValueError):
        gate.create_spot_order("BTC_USDT", "buy", 1, order_type="limit")

    session.request.return_value = _response(201, {"id": "1"})
    gate.create_spot_order("BTC_USDT", "buy", "0.5", price="42000")
    sent = json.loads(session.request.call_args.kwargs["data"])
    assert sent["time_in_force"] == "gtc" and sent["account"] == "spot" and sent["price"] == "42000"


def test_candles_are_oldest_first(session):
    session.request.return_value = _response(200, [
        ["1700003600", "10", "101", "102", "99", "100"],
        ["1700000000", "12", "100", "101", "98", "99"],
    ])
    candles = GateClient(session=session).get_candles("BTC_USDT", "1h", 2)
    assert [c["ts"] for c in candles] == [1700000000, 1700003600]
    assert candles[1]["close"] == 101.0 and candles[1]["open"] == 100.0


def test_snapshot_tolerates_partial_failure(gate, session):
    def respond(method, url, **kwargs):
        if "/futures/usdt/accounts" in url:
            return _response(200, {"total": "120", "available": "80", "currency": "usdt"})
        if "/spot/accounts" in url:
            return _response(500, {"label": "SERVER_ERROR"})
        return _response(200, [{"contract": "ETH_USDT", "size": -2, "mark_price": "2000", "margin": "40", "unrealised_pnl": "-4"}])

    session.request.side_effect = respond
    snap = gate.fetch_account_snapshot()
    assert snap["futures"]["total"] == 120.0
    assert snap["spot"] == []
    assert snap["positions"][0]["side"] == "short"
    assert snap["totalEstimatedValue"] == 120.0


def test_snapshot_raises_auth_error_when_everything_is_refused(gate, session):
    session.request.return_value = _response(403, {"label": "FORBIDDEN"})
    with pytest.raises(ExchangeAuthError):
        gate.fetch_account_snapshot()


def test_map_futures_position():
    mapped = map_futures_position(
        {"contract": "BTC_USDT", "size": 3, "leverage": "10", "margin": "50", "unrealised_pnl": "5",
         "entry_price": "100", "mark_price": "110"}
    )
    assert mapped["side"] == "long"
    assert mapped["pnlPercentage"] == pytest.approx(10.0)
    assert mapped["value"] == pytest.approx(330.0)
    assert map_futures_position({"contract": "BTC_USDT", "size": 0}) is None


@pytest.mark.parametrize(
    "raw,expected",
    [("BTCUSDT", "BTC_USDT"), ("btc_usdt", "BTC_USDT"), ("BINANCE:ETHUSDT.P", "ETH_USDT"),
     ("ETHBTC", "ETH_BTC"), ("SOL/USDC", "SOL_USDC"), ("XYZ", "XYZ")],
)
def test_format_symbol(raw, expected):
    assert format_symbol(raw) == expected
