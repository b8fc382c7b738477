# signalbridge/routes.py
from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from signalbridge.errors import ExchangeError, ValidationError
from signalbridge.gate_api import format_symbol
from signalbridge.models import APPROVED, CLOSE, ExchangeConnection, Signal, Subscriber, utcnow

logger = logging.getLogger(__name__)

bp = Blueprint("routes", __name__)

WEBHOOK_SECRET_HEADER = "x-webhook-secret"


def bridge():
    return current_app.extensions["signalbridge"]


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _param(name: str) -> Any:
    value = request.args.get(name)
    if value is None:
        value = json_body().get(name)
    return value


def _subscriber() -> Subscriber:
    """uid/key from the query string or JSON body; AccessDenied -> 403 {code}."""
    return bridge().subscribers.authorize(_param("uid"), _param("key"))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ── Webhook ───────────────────────────────────────────────────────────────────
@bp.route("/webhook", methods=["POST"])
@bp.route("/webhook/<secret>", methods=["POST"])
def webhook(secret: str | None = None):
    secret = secret or request.headers.get(WEBHOOK_SECRET_HEADER) or request.args.get("secret")
    if not secret:
        auth = request.headers.get("Authorization", "")
        if auth.lower().startswith("bearer "):
            secret = auth[7:].strip()

    body: Any = request.get_json(silent=True) if request.is_json else None
    if body is None:
        body = request.get_data(as_text=True)

    outcome = bridge().dispatcher.dispatch(body, secret=secret)
    return jsonify(outcome.to_dict()), outcome.http_status


@bp.get("/health")
def health():
    b = bridge()
    return jsonify({"ok": True, "mode": b.executor.mode, "time": utcnow()})


# ── Registration ──────────────────────────────────────────────────────────────
@bp.get("/api/strategies")
def list_strategies():
    return jsonify({"strategies": [s.to_dict() for s in bridge().strategies.active()]})


@bp.post("/api/register")
def register():
    data = json_body()
    strategies = data.get("strategies") or data.get("strategyIds") or []
    if isinstance(strategies, str):
        strategies = [strategies]
    subscriber = bridge().subscribers.register(data.get("uid"), strategies)
    return jsonify({"ok": True, "status": subscriber.status, "uid": subscriber.uid})


@bp.get("/api/user/status")
def user_status():
    b = bridge()
    subscriber = b.subscribers.ensure(request.args.get("uid", ""))

    def named(ids):
        out = []
        for sid in ids:
            strategy = b.strategies.get(sid)
            out.append({"id": sid, "name": strategy.name if strategy else sid})
        return out

    payload = subscriber.public_dict()
    payload["requestedStrategies"] = named(subscriber.requested_strategies)
    payload["approvedStrategies"] = named(subscriber.approved_strategies)
    payload["accessKey"] = subscriber.access_key if subscriber.status == APPROVED else None
    payload.pop("positions", None)
    return jsonify(payload)


# ── Subscriber-scoped ─────────────────────────────────────────────────────────
@bp.get("/api/user/signals")
def user_signals():
    subscriber = _subscriber()
    try:
        limit = int(request.args.get("limit", 0)) or None
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    signals = bridge().store.user_signals(subscriber.uid, limit=limit)
    return jsonify({"signals": [s.to_dict() for s in signals]})


@bp.get("/api/positions")
def positions():
    b = bridge()
    subscriber = _subscriber()
    try:
        summary = b.executor.account_summary(subscriber)
    except ExchangeError as exc:
        logger.warning(f"Account summary failed for uid={subscriber.uid}: {exc.message}")
        return jsonify({
            "ok": False,
            "code": exc.code,
            "message": exc.message,
            "positions": [p.to_dict() for p in subscriber.positions],
        }), 502

    return jsonify({"ok": True, **summary})


@bp.post("/api/positions/close")
def close_position():
    b = bridge()
    subscriber = _subscriber()
    contract = json_body().get("contract") or json_body().get("symbol")
    if not contract:
        raise ValidationError("contract is required")

    held = [p for p in subscriber.positions if p.contract == contract]
    result = b.executor.safe_close(subscriber, contract)
    if result.executed:
        signal = Signal(
            indicator="manual",
            symbol=contract,
            action=CLOSE,
            side=held[0].side if held else "flat",
            source="manual",
        )
        b.subscribers.record_delivery(subscriber.uid, signal, result)
    return jsonify({"ok": result.executed, **result.to_dict()}), (200 if result.executed else 400)


@bp.post("/api/user/auto-trading")
def auto_trading():
    subscriber = _subscriber()
    enabled = _as_bool(json_body().get("enabled"))
    subscriber = bridge().subscribers.set_auto_trading(subscriber.uid, enabled)
    return jsonify({"ok": True, "autoTradingEnabled": subscriber.auto_trading_enabled})


@bp.post("/api/user/settings")
def user_settings():
    subscriber = _subscriber()
    data = json_body()
    subscriber = bridge().subscribers.update_settings(
        subscriber.uid,
        investment_amount=data.get("investmentAmount"),
        leverage=data.get("leverage"),
        symbol=data.get("symbol"),
    )
    return jsonify({"ok": True, "settings": subscriber.settings.to_dict()})


@bp.post("/api/user/exchange")
def connect_exchange():
    b = bridge()
    subscriber = _subscriber()
    data = json_body()
    api_key = (data.get("apiKey") or "").strip()
    api_secret = (data.get("apiSecret") or "").strip()
    if not api_key or not api_secret:
        raise ValidationError("apiKey and apiSecret are required")
    testnet = _as_bool(data.get("testnet") or data.get("isTestnet"))

    # credentials are verified with a signed read before they are stored
    candidate = ExchangeConnection(api_key=api_key, api_secret=api_secret, testnet=testnet)
    b.client_factory(candidate).get_futures_account()

    subscriber = b.subscribers.connect_exchange(subscriber.uid, api_key, api_secret, testnet)
    return jsonify({"ok": True, "exchange": subscriber.exchange.public_dict()})


@bp.delete("/api/user/exchange")
def disconnect_exchange():
    subscriber = _subscriber()
    bridge().subscribers.disconnect_exchange(subscriber.uid)
    return jsonify({"ok": True, "exchange": {"connected": False}})


# ── Public market data ────────────────────────────────────────────────────────
@bp.get("/api/market/<symbol>")
def market(symbol: str):
    client = bridge().client_factory(None)
    pair = format_symbol(symbol)
    try:
        depth = int(request.args.get("limit", 15))
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    return jsonify({"symbol": pair, "ticker": client.get_ticker(pair), "orderBook": client.get_order_book(pair, depth)})


@bp.get("/api/candles/<symbol>")
def candles(symbol: str):
    pair = format_symbol(symbol)
    interval = request.args.get("interval", "1h")
    try:
        limit = max(1, min(1000, int(request.args.get("limit", 100))))
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    items = bridge().client_factory(None).get_candles(pair, interval, limit)
    return jsonify({"symbol": pair, "interval": interval, "items": items})
