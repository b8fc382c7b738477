# tests/test_dispatcher.py
from unittest.mock import MagicMock

import pytest

from conftest import WEBHOOK_SECRET
from signalbridge.dispatcher import BLOCKED_BY_ROUTING, BLOCKED_INACTIVE, WebhookDispatcher
from signalbridge.errors import ValidationError, WebhookSecretError
from signalbridge.models import ExecutionResult

ALERT = {"indicator": "btc-momentum", "symbol": "BTC_USDT", "direction": "long"}


@pytest.fixture
def dispatcher(store, strategies, subscribers, webhooks, executor):
    strategies.create("BTC Momentum")
    strategies.create("ETH Range")
    return WebhookDispatcher(store, strategies, subscribers, webhooks, executor)


def _auto_trader(subscribers, uid, strategy="btc-momentum"):
    subscribers.approve(uid, [strategy])
    subscribers.connect_exchange(uid, "key", "secret")
    return subscribers.set_auto_trading(uid, True)


@pytest.mark.parametrize("secret", [None, "", "wrong"])
def test_bad_secret_is_rejected(dispatcher, store, secret):
    with pytest.raises(WebhookSecretError) as info:
        dispatcher.dispatch(ALERT, secret=secret)
    assert info.value.status_code == 403
    assert store.strategy_signals() == []


def test_secret_can_travel_in_the_body(dispatcher):
    outcome = dispatcher.dispatch({**ALERT, "secret": WEBHOOK_SECRET})
    assert outcome.http_status == 200 and outcome.ok


def test_unparseable_alert_is_400(dispatcher):
    with pytest.raises(ValidationError) as info:
        dispatcher.dispatch({"indicator": "btc-momentum"}, secret=WEBHOOK_SECRET)
    assert info.value.status_code == 400


def test_unknown_indicator_is_soft_no_match(dispatcher, store):
    outcome = dispatcher.dispatch({**ALERT, "indicator": "sol-scalper"}, secret=WEBHOOK_SECRET)
    assert outcome.http_status == 202
    assert outcome.to_dict() == {"ok": False, "message": "no match"}
    assert store.strategy_signals() == []


def test_missing_indicator_without_single_route_is_400(dispatcher):
    with pytest.raises(ValidationError):
        dispatcher.dispatch({"symbol": "BTC_USDT", "direction": "long"}, secret=WEBHOOK_SECRET)


def test_single_route_fallback(dispatcher, webhooks, subscribers):
    webhooks.set_routes(["eth-range"])
    subscribers.approve("trader1", ["eth-range"])
    outcome = dispatcher.dispatch({"symbol": "ETH_USDT", "direction": "short"}, secret=WEBHOOK_SECRET)
    assert outcome.strategy_id == "eth-range"
    assert outcome.delivered == 1


def test_fan_out_reaches_only_approved_subscribers(dispatcher, subscribers, store):
    subscribers.approve("trader1", ["btc-momentum"])
    subscribers.approve("trader2", ["btc-momentum", "eth-range"])
    subscribers.approve("other", ["eth-range"])
    subscribers.register("pending1", ["btc-momentum"])

    outcome = dispatcher.dispatch(ALERT, secret=WEBHOOK_SECRET)
    assert outcome.to_dict()["delivered"] == 2

    (sig,) = store.user_signals("trader1")
    assert (sig.action, sig.side, sig.status) == ("open", "long", "delivered")
    assert sig.id == outcome.signal_id
    assert store.user_signals("other") == []
    assert store.user_signals("pending1") == []

    (aggregate,) = store.strategy_signals("btc-momentum")
    assert aggregate.delivered == 2
    assert aggregate.status == "delivered to 2 subscriber(s)"


def test_routing_block_records_history(dispatcher, webhooks, subscribers, store):
    subscribers.approve("trader1", ["btc-momentum"])
    webhooks.set_routes(["eth-range"])

    outcome = dispatcher.dispatch(ALERT, secret=WEBHOOK_SECRET)
    assert (outcome.http_status, outcome.ok, outcome.delivered) == (200, True, 0)
    assert store.user_signals("trader1") == []
    (sig,) = store.strategy_signals("btc-momentum")
    assert sig.status == BLOCKED_BY_ROUTING


def test_empty_routes_are_unrestricted(dispatcher, webhooks, subscribers):
    webhooks.set_routes([])
    subscribers.approve("trader1", ["btc-momentum"])
    assert dispatcher.dispatch(ALERT, secret=WEBHOOK_SECRET).delivered == 1


def test_inactive_strategy_is_blocked(dispatcher, strategies, subscribers, store):
    subscribers.approve("trader1", ["btc-momentum"])
    strategies.set_active("btc-momentum", False)

    outcome = dispatcher.dispatch(ALERT, secret=WEBHOOK_SECRET)
    assert outcome.delivered == 0
    assert store.strategy_signals("btc-momentum")[0].status == BLOCKED_INACTIVE


def test_auto_trading_runs_and_counts(dispatcher, subscribers, store):
    _auto_trader(subscribers, "trader1")
    subscribers.approve("trader2", ["btc-momentum"])

    outcome = dispatcher.dispatch(ALERT, secret=WEBHOOK_SECRET)
    assert outcome.delivered == 2
    assert outcome.executed == 1
    assert [p.contract for p in subscribers.get("trader1").positions] == ["BTC_USDT"]
    assert store.user_signals("trader1")[0].auto_trading_executed is True
    assert store.strategy_signals("btc-momentum")[0].status == "delivered to 2 subscriber(s), 1 executed"


def test_one_failing_subscriber_does_not_stop_the_others(store, strategies, subscribers, webhooks):
    strategies.create("BTC Momentum")
    for uid in ("a", "b", "c"):
        _auto_trader(subscribers, uid)

    def decide(subscriber, signal):
        if subscriber.uid == "b":
            raise RuntimeError("boom")
        return ExecutionResult(executed=False, reason="symbol_mismatch")

    executor = MagicMock()
    executor.decide.side_effect = decide
    dispatcher = WebhookDispatcher(store, strategies, subscribers, webhooks, executor)

    outcome = dispatcher.dispatch(ALERT, secret=WEBHOOK_SECRET)
    assert outcome.delivered == 2
    assert executor.decide.call_count == 3
    assert store.user_signals("b") == []
    assert store.user_signals("c")[0].execution_reason == "symbol_mismatch"
    assert store.strategy_signals("btc-momentum")[0].status.endswith("1 failed")


def test_broadcast_ignores_routing(dispatcher, webhooks, subscribers, store):
    subscribers.approve("trader1", ["btc-momentum"])
    webhooks.set_routes(["eth-range"])

    outcome = dispatcher.broadcast("btc-momentum", {"symbol": "btcusdt", "action": "close", "side": "short", "price": "42000"})
    assert outcome.delivered == 1
    (sig,) = store.user_signals("trader1")
    assert (sig.symbol, sig.action, sig.side, sig.price) == ("BTC_USDT", "close", "short", 42000.0)
    assert sig.source == "admin"


def test_broadcast_rejects_inactive_strategy(dispatcher, strategies):
    strategies.set_active("btc-momentum", False)
    with pytest.raises(ValidationError):
        dispatcher.broadcast("btc-momentum", {"symbol": "BTC_USDT", "action": "long"})
