# ───────────────────────────────────────────────────────────────────────────────
# signalbridge/execution.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from signalbridge.core import ExchangeClient
from signalbridge.errors import ExchangeError, ExchangeTimeout
from signalbridge.gate_api import map_futures_account, map_futures_position
from signalbridge.models import (
    CLOSE,
    MAX_LEVERAGE,
    SHORT,
    ExchangeConnection,
    ExecutionResult,
    Position,
    Signal,
    Subscriber,
)
from signalbridge.notifications import EmailNotifier

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Optional[ExchangeConnection]], ExchangeClient]

NO_OPEN_POSITION = "no open position"


def _failed(reason: str, paper: bool) -> ExecutionResult:
    return ExecutionResult(executed=False, reason=reason, paper=paper)


class TradeExecutor:
    """
    Turns a delivered signal into a position change for one subscriber.

    Two modes share the same preconditions:
    - paper: simulated positions priced from the public spot ticker, margin
      held against the subscriber's paper balance
    - live: IOC market orders on Gate.io USDT futures with the subscriber's keys

    decide() never raises for precondition or exchange failures; both come back
    as ExecutionResult(executed=False, reason=...).
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        mode: str = "paper",
        notifier: EmailNotifier | None = None,
        settle: str = "usdt",
    ) -> None:
        self.client_factory = client_factory
        self.mode = mode
        self.notifier = notifier
        self.settle = settle

    @property
    def paper(self) -> bool:
        return self.mode != "live"

    # ── Decision ──────────────────────────────────────────────────────────────
    def precondition(self, subscriber: Subscriber, signal: Signal) -> Optional[str]:
        if subscriber.exchange is None:
            return "exchange_not_connected"
        if not subscriber.auto_trading_enabled:
            return "auto_trading_disabled"
        pinned = subscriber.settings.symbol
        if pinned and pinned != signal.symbol:
            return "symbol_mismatch"
        if subscriber.settings.investment_amount <= 0:
            return "invalid_investment_amount"
        return None

    def decide(self, subscriber: Subscriber, signal: Signal) -> ExecutionResult:
        reason = self.precondition(subscriber, signal)
        if reason:
            logger.info(f"Execution skipped for uid={subscriber.uid}: {reason}")
            return _failed(reason, self.paper)

        try:
            if signal.action == CLOSE:
                return self.close(subscriber, signal.symbol)
            return self._open(subscriber, signal)
        except ExchangeError as exc:
            return self._exchange_failure(subscriber, signal.symbol, exc)

    def close(self, subscriber: Subscriber, contract: str) -> ExecutionResult:
        """Close every position on `contract`. Also used for manual closes from the dashboard."""
        if self.paper:
            return self._paper_close(subscriber, contract)
        if subscriber.exchange is None:
            return _failed("exchange_not_connected", paper=False)
        return self._live_close(subscriber, contract)

    def safe_close(self, subscriber: Subscriber, contract: str) -> ExecutionResult:
        try:
            return self.close(subscriber, contract)
        except ExchangeError as exc:
            return self._exchange_failure(subscriber, contract, exc)

    def _exchange_failure(self, subscriber: Subscriber, contract: str, exc: ExchangeError) -> ExecutionResult:
        logger.warning(f"Exchange error for uid={subscriber.uid} {contract}: {exc.message} (status={exc.status})")
        if self.notifier is not None:
            self.notifier.send_alert(
                f"Trade execution failed for {subscriber.uid}",
                f"Contract: {contract}\nMode: {self.mode}\nError: {exc.message}\nStatus: {exc.status}",
            )
        return _failed(f"exchange_error: {exc.message}", self.paper)

    def _leverage(self, subscriber: Subscriber, signal: Signal) -> int:
        lev = signal.leverage or subscriber.settings.leverage or 1
        return min(MAX_LEVERAGE, max(1, int(lev)))

    # ── Paper ─────────────────────────────────────────────────────────────────
    def _price(self, contract: str) -> float:
        ticker = self.client_factory(None).get_ticker(contract)
        price = float(ticker.get("last") or 0)
        if price <= 0:
            raise ExchangeError(f"No reference price for {contract}")
        return price

    def _open(self, subscriber: Subscriber, signal: Signal) -> ExecutionResult:
        if self.paper:
            return self._paper_open(subscriber, signal)
        return self._live_open(subscriber, signal)

    def _paper_open(self, subscriber: Subscriber, signal: Signal) -> ExecutionResult:
        contract = signal.symbol
        investment = subscriber.settings.investment_amount
        leverage = self._leverage(subscriber, signal)
        price = self._price(contract)

        # an open on a contract already held replaces that position
        replaced = [p for p in subscriber.positions if p.contract == contract]
        realised = sum((price - p.entry_price) * p.size for p in replaced)
        used = sum(p.margin for p in subscriber.positions if p.contract != contract)
        available = subscriber.paper_balance + realised - used
        if investment > available:
            return _failed("insufficient_balance", paper=True)

        size = investment * leverage / price
        if signal.side == SHORT:
            size = -size
        position = Position(
            contract=contract,
            size=size,
            leverage=leverage,
            margin=investment,
            entry_price=price,
            mark_price=price,
        )
        logger.info(f"Paper open uid={subscriber.uid} {contract} size={size:.8f} @ {price}")
        return ExecutionResult(
            executed=True,
            position=position,
            closed_contract=contract if replaced else None,
            realised_pnl=realised,
            paper=True,
        )

    def _paper_close(self, subscriber: Subscriber, contract: str) -> ExecutionResult:
        held = [p for p in subscriber.positions if p.contract == contract]
        if not held:
            return _failed(NO_OPEN_POSITION, paper=True)
        price = self._price(contract)
        realised = sum((price - p.entry_price) * p.size for p in held)
        logger.info(f"Paper close uid={subscriber.uid} {contract} @ {price} pnl={realised:.4f}")
        return ExecutionResult(executed=True, closed_contract=contract, realised_pnl=realised, paper=True)

    # ── Live ──────────────────────────────────────────────────────────────────
    def _live_open(self, subscriber: Subscriber, signal: Signal) -> ExecutionResult:
        client = self.client_factory(subscriber.exchange)
        contract = signal.symbol
        investment = subscriber.settings.investment_amount
        leverage = self._leverage(subscriber, signal)

        try:
            client.set_leverage(contract, leverage, settle=self.settle)
        except ExchangeError as exc:
            logger.warning(f"set_leverage failed for uid={subscriber.uid} {contract}: {exc.message}")

        ticker = client.get_futures_ticker(contract, settle=self.settle)
        price = float(ticker.get("mark_price") or ticker.get("last") or 0)
        if price <= 0:
            raise ExchangeError(f"No reference price for {contract}")
        info = client.get_futures_contract(contract, settle=self.settle) or {}
        multiplier = float(info.get("quanto_multiplier") or 1) or 1.0

        contracts = int(investment * leverage / price / multiplier)
        if contracts < 1:
            return _failed("order_size_too_small", paper=False)
        size = -contracts if signal.side == SHORT else contracts

        # order placement is never retried
        order = client.create_futures_order(contract, size, settle=self.settle) or {}
        fill = float(order.get("fill_price") or 0) or price
        position = Position(
            contract=contract,
            size=float(size),
            leverage=leverage,
            margin=investment,
            entry_price=fill,
            mark_price=fill,
            order_id=str(order.get("id")) if order.get("id") is not None else None,
        )
        logger.info(f"Live open uid={subscriber.uid} {contract} size={size} order={position.order_id}")
        return ExecutionResult(executed=True, position=position, order_id=position.order_id, paper=False)

    def _read_positions(self, client: ExchangeClient) -> List[Dict[str, Any]]:
        try:
            return client.get_futures_positions(settle=self.settle)
        except ExchangeTimeout:
            logger.warning("Position read timed out, retrying once")
            return client.get_futures_positions(settle=self.settle)

    def _live_close(self, subscriber: Subscriber, contract: str) -> ExecutionResult:
        client = self.client_factory(subscriber.exchange)
        held = [p for p in self._read_positions(client) if p.get("contract") == contract and float(p.get("size") or 0)]
        if not held:
            return _failed(NO_OPEN_POSITION, paper=False)

        order_id = None
        realised = 0.0
        for p in held:
            size = int(float(p["size"]))
            order = client.create_futures_order(contract, -size, reduce_only=True, settle=self.settle) or {}
            order_id = str(order.get("id")) if order.get("id") is not None else order_id
            realised += float(p.get("unrealised_pnl") or 0)
        logger.info(f"Live close uid={subscriber.uid} {contract} order={order_id}")
        return ExecutionResult(
            executed=True, closed_contract=contract, order_id=order_id, realised_pnl=realised, paper=False
        )

    # ── Account summary ───────────────────────────────────────────────────────
    def account_summary(self, subscriber: Subscriber) -> Dict[str, Any]:
        """
        Balance, margin and unrealised P&L for the dashboard.

        Paper marks are refreshed from tickers; a failed ticker keeps the last mark.
        Live reads the exchange and lets ExchangeError propagate to the caller.
        """
        if self.paper:
            return self._paper_summary(subscriber)
        return self._live_summary(subscriber)

    def _paper_summary(self, subscriber: Subscriber) -> Dict[str, Any]:
        positions = [Position.from_dict(p.to_dict()) for p in subscriber.positions]
        for p in positions:
            try:
                p.mark(self._price(p.contract))
            except ExchangeError as exc:
                logger.warning(f"Mark refresh failed for {p.contract}: {exc.message}")
        margin = sum(p.margin for p in positions)
        pnl = sum(p.unrealised_pnl for p in positions)
        return {
            "mode": "paper",
            "balance": round(subscriber.paper_balance, 8),
            "margin": round(margin, 8),
            "available": round(subscriber.paper_balance - margin, 8),
            "unrealisedPnl": round(pnl, 8),
            "equity": round(subscriber.paper_balance + pnl, 8),
            "positions": [p.to_dict() for p in positions],
        }

    def _live_summary(self, subscriber: Subscriber) -> Dict[str, Any]:
        if subscriber.exchange is None:
            return {
                "mode": "live",
                "connected": False,
                "positions": [p.to_dict() for p in subscriber.positions],
            }
        client = self.client_factory(subscriber.exchange)
        account = map_futures_account(client.get_futures_account(settle=self.settle)) or {}
        mapped = [m for m in map(map_futures_position, self._read_positions(client)) if m]
        return {
            "mode": "live",
            "connected": True,
            "balance": account.get("total", 0.0),
            "margin": account.get("positionMargin", 0.0),
            "available": account.get("available", 0.0),
            "unrealisedPnl": account.get("unrealisedPnl", 0.0),
            "equity": account.get("total", 0.0) + account.get("unrealisedPnl", 0.0),
            "positions": mapped,
        }
