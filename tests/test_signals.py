# tests/test_signals.py
import pytest

from signalbridge.errors import ValidationError
from signalbridge.signals import decode_body, parse_alert, parse_direction


@pytest.mark.parametrize(
    "text,expected",
    [
        ("long", ("open", "long")),
        ("buy", ("open", "long")),
        ("SELL", ("open", "short")),
        ("open short", ("open", "short")),
        ("close long", ("close", "long")),
        ("Exit Short", ("close", "short")),
        ("whatever", ("open", "long")),
    ],
)
def test_parse_direction(text, expected):
    assert parse_direction(text) == expected


def test_parse_alert_reads_fallback_fields():
    alert = parse_alert({"strategy": "BTC Momentum", "ticker": "BTCUSDT", "side": "sell", "contracts": "3", "close": "42000.5"})
    assert alert.indicator == "BTC Momentum"
    assert alert.symbol == "BTC_USDT"
    assert (alert.action, alert.side) == ("open", "short")
    assert alert.size == 3.0
    assert alert.price == 42000.5


def test_first_present_field_wins():
    alert = parse_alert({"indicator": "a", "strategy": "b", "name": "c", "symbol": "ETH_USDT", "pair": "BTC_USDT", "direction": "long"})
    assert alert.indicator == "a"
    assert alert.symbol == "ETH_USDT"


def test_direction_text_joins_all_fields():
    alert = parse_alert({"symbol": "BTC_USDT", "action": "close", "side": "short"})
    assert alert.direction == "short close"
    assert (alert.action, alert.side) == ("close", "short")


def test_json_text_body():
    alert = parse_alert('{"indicator": "eth-range", "symbol": "ETH_USDT", "direction": "long", "leverage": 5}')
    assert alert.indicator == "eth-range"
    assert alert.leverage == 5


def test_key_value_text_body():
    body = "Indicator: btc-momentum\nSymbol: BTCUSDT\nDirection: exit long\nsecret: abc"
    alert = parse_alert(body)
    assert alert.indicator == "btc-momentum"
    assert alert.symbol == "BTC_USDT"
    assert alert.action == "close"
    assert alert.secret == "abc"


def test_missing_indicator_is_allowed_at_parse_time():
    assert parse_alert({"symbol": "BTC_USDT", "direction": "long"}).indicator is None


@pytest.mark.parametrize(
    "body",
    [
        {"indicator": "x", "direction": "long"},
        {"indicator": "x", "symbol": "BTC_USDT"},
        {"indicator": "x", "symbol": "  ", "direction": "long"},
        "",
        "{not json",
        "[1, 2]",
        "no separators here",
        [1, 2],
        5,
    ],
)
def test_invalid_bodies_are_rejected(body):
    with pytest.raises(ValidationError):
        parse_alert(body)


def test_decode_body_lowercases_keys():
    assert decode_body({"Symbol": "BTC_USDT"}) == {"symbol": "BTC_USDT"}
