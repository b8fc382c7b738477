# signalbridge/admin.py
from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required

from signalbridge.errors import ValidationError
from signalbridge.models import APPROVED, DENIED, PENDING
from signalbridge.routes import bridge, json_body

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__, url_prefix="/api")


def _ids(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if not isinstance(value, list):
        raise ValidationError("strategy ids must be a list")
    return value


def _webhook_payload():
    b = bridge()
    reg = b.webhooks.ensure()
    return {**reg.to_dict(), "url": b.webhooks.url_for(request.host_url, reg)}


@bp.get("/admin/overview")
@login_required
def overview():
    b = bridge()
    users = []
    for s in b.subscribers.list():
        u = s.public_dict()
        u["accessKey"] = s.access_key
        users.append(u)
    return jsonify({
        "users": users,
        "strategies": [s.to_dict() for s in b.strategies.list()],
        "webhook": _webhook_payload(),
        "stats": {
            "totalUsers": len(users),
            "pending": sum(1 for u in users if u["status"] == PENDING),
            "approved": sum(1 for u in users if u["status"] == APPROVED),
            "denied": sum(1 for u in users if u["status"] == DENIED),
        },
    })


@bp.get("/admin/signals")
@login_required
def signals():
    strategy_id = request.args.get("strategy") or None
    try:
        limit = int(request.args.get("limit", 0)) or None
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    items = bridge().store.strategy_signals(strategy_id, limit=limit)
    return jsonify({"strategy": strategy_id, "signals": [s.to_dict() for s in items]})


# ── Webhook ───────────────────────────────────────────────────────────────────
@bp.get("/admin/webhook")
@login_required
def webhook_get():
    return jsonify(_webhook_payload())


@bp.post("/admin/webhook")
@login_required
def webhook_rotate():
    bridge().webhooks.rotate()
    return jsonify(_webhook_payload())


@bp.put("/admin/webhook/routes")
@login_required
def webhook_routes():
    bridge().webhooks.set_routes(_ids(json_body().get("routes")))
    return jsonify(_webhook_payload())


# ── Users ─────────────────────────────────────────────────────────────────────
@bp.post("/admin/users/approve")
@login_required
def approve_user():
    data = json_body()
    subscriber = bridge().subscribers.approve(data.get("uid"), _ids(data.get("strategies")))
    return jsonify({"ok": True, "user": {**subscriber.public_dict(), "accessKey": subscriber.access_key}})


@bp.post("/admin/users/deny")
@login_required
def deny_user():
    subscriber = bridge().subscribers.deny(json_body().get("uid"))
    return jsonify({"ok": True, "user": subscriber.public_dict()})


@bp.patch("/admin/users/<uid>/strategies")
@login_required
def user_strategies(uid: str):
    subscriber = bridge().subscribers.set_strategies(uid, _ids(json_body().get("strategies")))
    return jsonify({"ok": True, "user": subscriber.public_dict()})


# ── Strategies ────────────────────────────────────────────────────────────────
@bp.post("/admin/strategies")
@login_required
def create_strategy():
    data = json_body()
    strategy = bridge().strategies.create(data.get("name"), data.get("description"), _ids(data.get("aliases")))
    return jsonify({"ok": True, "strategy": strategy.to_dict()}), 201


@bp.patch("/admin/strategies/<strategy_id>")
@login_required
def update_strategy(strategy_id: str):
    data = json_body()
    active = data.get("active")
    if active is not None and not isinstance(active, bool):
        raise ValidationError("active must be a boolean")
    strategy = bridge().strategies.update(
        strategy_id,
        name=data.get("name"),
        description=data.get("description"),
        aliases=_ids(data["aliases"]) if data.get("aliases") is not None else None,
        active=active,
    )
    return jsonify({"ok": True, "strategy": strategy.to_dict()})


@bp.post("/admin/signals/broadcast")
@login_required
def broadcast():
    data = json_body()
    strategy_id = data.get("strategyId")
    if not strategy_id:
        raise ValidationError("strategyId is required")
    outcome = bridge().dispatcher.broadcast(strategy_id, data)
    return jsonify(outcome.to_dict()), outcome.http_status


@bp.get("/logs")
@login_required
def logs():
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    return jsonify({"logs": bridge().log_handler.records(limit)})
