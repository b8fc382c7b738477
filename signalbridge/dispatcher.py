# signalbridge/dispatcher.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from signalbridge.core import Store
from signalbridge.errors import ValidationError, WebhookSecretError
from signalbridge.execution import TradeExecutor
from signalbridge.gate_api import format_symbol
from signalbridge.models import Signal, Strategy
from signalbridge.signals import Alert, decode_body, parse_alert, parse_direction
from signalbridge.strategies import StrategyRegistry
from signalbridge.subscribers import SubscriberRegistry
from signalbridge.webhooks import WebhookSettings

logger = logging.getLogger(__name__)

BLOCKED_BY_ROUTING = "blocked by admin routing"
BLOCKED_INACTIVE = "blocked: strategy inactive"


@dataclass
class DispatchOutcome:
    http_status: int
    ok: bool
    delivered: int = 0
    message: Optional[str] = None
    strategy_id: Optional[str] = None
    signal_id: Optional[str] = None
    executed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok}
        if self.ok:
            out["delivered"] = self.delivered
        if self.message:
            out["message"] = self.message
        if self.strategy_id:
            out["strategyId"] = self.strategy_id
        if self.signal_id:
            out["signalId"] = self.signal_id
        if self.executed:
            out["executed"] = self.executed
        return out


class WebhookDispatcher:
    """
    Inbound alert pipeline:

        received -> secret verified (403) -> parsed (400) -> matched (202 no match)
                 -> routed (200, delivered=0) -> delivered (200)

    A missing indicator is only tolerated when the routing allow-list holds a
    single strategy, which then receives the alert. Routing misses are soft
    outcomes, not exceptions. Fan-out runs sequentially in subscriber
    registration order and one subscriber's failure never stops the others.
    """

    def __init__(
        self,
        store: Store,
        strategies: StrategyRegistry,
        subscribers: SubscriberRegistry,
        webhooks: WebhookSettings,
        executor: TradeExecutor,
    ) -> None:
        self.store = store
        self.strategies = strategies
        self.subscribers = subscribers
        self.webhooks = webhooks
        self.executor = executor

    def dispatch(self, body: Any, secret: Optional[str] = None) -> DispatchOutcome:
        data: Optional[Dict[str, Any]] = None
        if not secret:
            try:
                data = decode_body(body)
                secret = data.get("secret")
            except ValidationError:
                data = None
        if not self.webhooks.verify(secret):
            logger.warning("Webhook rejected: invalid or missing secret")
            raise WebhookSecretError("Invalid webhook secret")

        alert = parse_alert(data if data is not None else body)
        logger.info(
            f"Webhook alert: indicator={alert.indicator!r} symbol={alert.symbol} direction={alert.direction!r}"
        )

        strategy = self._match(alert)
        if strategy is None:
            logger.info(f"No strategy matched indicator {alert.indicator!r}")
            return DispatchOutcome(202, ok=False, message="no match")

        signal = Signal(
            indicator=alert.indicator or strategy.id,
            symbol=alert.symbol,
            action=alert.action,
            side=alert.side,
            strategy_id=strategy.id,
            size=alert.size,
            leverage=alert.leverage,
            price=alert.price,
        )

        routes = self.webhooks.ensure().routes
        if routes and strategy.id not in routes:
            return self._blocked(strategy, signal, BLOCKED_BY_ROUTING)
        if not strategy.active:
            return self._blocked(strategy, signal, BLOCKED_INACTIVE)

        return self.fan_out(strategy, signal)

    def _match(self, alert: Alert) -> Optional[Strategy]:
        strategy = self.strategies.match_by_indicator(alert.indicator) if alert.indicator else None
        if strategy is not None:
            return strategy

        routes = self.webhooks.ensure().routes
        if len(routes) == 1:
            fallback = self.strategies.get(routes[0])
            if fallback is not None:
                logger.info(f"Single-route fallback to strategy {fallback.id}")
                return fallback

        if not alert.indicator:
            raise ValidationError("Missing indicator (indicator, strategy or name)")
        return None

    def _blocked(self, strategy: Strategy, signal: Signal, status: str) -> DispatchOutcome:
        signal.status = status
        signal.delivered = 0
        self.store.append_strategy_signal(strategy.id, signal)
        logger.info(f"Signal {signal.id} for {strategy.id} {status}")
        return DispatchOutcome(
            200, ok=True, delivered=0, message=status, strategy_id=strategy.id, signal_id=signal.id
        )

    def fan_out(self, strategy: Strategy, signal: Signal) -> DispatchOutcome:
        delivered = executed = failed = 0
        for subscriber in self.subscribers.approved_for(strategy.id):
            try:
                result = None
                if subscriber.auto_trading_enabled:
                    result = self.executor.decide(subscriber, signal)
                if self.subscribers.record_delivery(subscriber.uid, signal, result):
                    delivered += 1
                    if result is not None and result.executed:
                        executed += 1
            except Exception:
                failed += 1
                logger.exception(f"Delivery of {signal.id} to uid={subscriber.uid} failed")

        signal.delivered = delivered
        signal.status = f"delivered to {delivered} subscriber(s)"
        if executed:
            signal.status += f", {executed} executed"
        if failed:
            signal.status += f", {failed} failed"
        self.store.append_strategy_signal(strategy.id, signal)

        logger.info(f"Signal {signal.id} for {strategy.id}: {signal.status}")
        return DispatchOutcome(
            200, ok=True, delivered=delivered, strategy_id=strategy.id, signal_id=signal.id, executed=executed
        )

    def broadcast(self, strategy_id: str, fields: Mapping[str, Any]) -> DispatchOutcome:
        """Admin-authored signal pushed to a strategy's subscribers. Routing does not apply."""
        strategy = self.strategies.require(strategy_id)
        if not strategy.active:
            raise ValidationError(f"Strategy {strategy.id} is inactive")
        symbol = format_symbol(str(fields.get("symbol") or ""))
        if not symbol:
            raise ValidationError("symbol is required")

        text = " ".join(str(fields.get(k) or "") for k in ("action", "side")).strip()
        action, side = parse_direction(text)
        price = fields.get("price")
        try:
            price = float(price) if price not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError("price must be a number") from None

        signal = Signal(
            indicator=str(fields.get("title") or strategy.name),
            symbol=symbol,
            action=action,
            side=side,
            strategy_id=strategy.id,
            price=price,
            source="admin",
        )
        logger.info(f"Admin broadcast for {strategy.id}: {symbol} {action} {side}")
        return self.fan_out(strategy, signal)
