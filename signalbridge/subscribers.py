# signalbridge/subscribers.py
from __future__ import annotations

import hmac
import logging
import secrets
import threading
from typing import Iterable, List, Optional

from signalbridge.core import Store
from signalbridge.errors import AccessDenied, NotFoundError, ValidationError
from signalbridge.gate_api import format_symbol
from signalbridge.models import (
    APPROVED,
    DENIED,
    MAX_LEVERAGE,
    NOT_REGISTERED,
    PENDING,
    ExchangeConnection,
    ExecutionResult,
    Signal,
    Subscriber,
    utcnow,
)
from signalbridge.strategies import StrategyRegistry

logger = logging.getLogger(__name__)


def _clean_ids(ids: Iterable[str] | None) -> List[str]:
    out: List[str] = []
    for raw in ids or ():
        sid = str(raw).strip()
        if sid and sid not in out:
            out.append(sid)
    return out


class SubscriberRegistry:
    """
    UID-keyed subscriber state: approval workflow, access keys, trading settings,
    exchange credentials and positions.

    Mutations are read-modify-write against the store under one lock. Exchange
    calls never happen while the lock is held.
    """

    def __init__(self, store: Store, strategies: StrategyRegistry, paper_starting_balance: float = 1000.0) -> None:
        self.store = store
        self.strategies = strategies
        self.paper_starting_balance = paper_starting_balance
        self._lock = threading.RLock()

    # ── Lookup ────────────────────────────────────────────────────────────────
    def get(self, uid: str) -> Optional[Subscriber]:
        return self.store.get_subscriber(uid)

    def require(self, uid: str) -> Subscriber:
        subscriber = self.get(uid)
        if subscriber is None:
            raise NotFoundError(f"Unknown uid: {uid}")
        return subscriber

    def list(self) -> List[Subscriber]:
        return self.store.list_subscribers()

    def ensure(self, uid: str) -> Subscriber:
        """Fetch or create (as not_registered) the subscriber for `uid`."""
        uid = (uid or "").strip()
        if not uid:
            raise ValidationError("uid is required")
        with self._lock:
            subscriber = self.get(uid)
            if subscriber is None:
                subscriber = Subscriber(uid=uid, status=NOT_REGISTERED, paper_balance=self.paper_starting_balance)
                self.store.save_subscriber(subscriber)
            return subscriber

    def approved_for(self, strategy_id: str) -> List[Subscriber]:
        return [s for s in self.list() if s.is_approved and strategy_id in s.approved_strategies]

    def _valid_ids(self, ids: Iterable[str] | None) -> List[str]:
        known = self.strategies.known_ids()
        return [sid for sid in _clean_ids(ids) if sid in known]

    # ── Workflow ──────────────────────────────────────────────────────────────
    def register(self, uid: str, strategy_ids: Iterable[str]) -> Subscriber:
        ids = self._valid_ids(strategy_ids)
        if not ids:
            raise ValidationError("Select at least one known strategy")
        with self._lock:
            subscriber = self.ensure(uid)
            if subscriber.is_approved:
                return subscriber
            subscriber.status = PENDING
            subscriber.requested_strategies = ids
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        logger.info(f"Registration request: uid={subscriber.uid} strategies={ids}")
        return subscriber

    def approve(self, uid: str, strategy_ids: Iterable[str]) -> Subscriber:
        ids = self._valid_ids(strategy_ids)
        if not ids:
            raise ValidationError("Approval needs at least one valid strategy id")
        with self._lock:
            subscriber = self.ensure(uid)
            subscriber.status = APPROVED
            subscriber.approved_strategies = list(ids)
            subscriber.requested_strategies = list(ids)
            if not subscriber.access_key:
                subscriber.access_key = secrets.token_hex(16)
            subscriber.approved_at = utcnow()
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        logger.info(f"Subscriber approved: uid={subscriber.uid} strategies={ids}")
        return subscriber

    def deny(self, uid: str) -> Subscriber:
        """Revoke access. Positions are kept for manual follow-up."""
        with self._lock:
            subscriber = self.ensure(uid)
            subscriber.status = DENIED
            subscriber.approved_strategies = []
            subscriber.access_key = None
            subscriber.auto_trading_enabled = False
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        if subscriber.positions:
            logger.warning(
                f"Subscriber denied with {len(subscriber.positions)} open position(s): uid={subscriber.uid}"
            )
        else:
            logger.info(f"Subscriber denied: uid={subscriber.uid}")
        return subscriber

    def set_strategies(self, uid: str, strategy_ids: Iterable[str]) -> Subscriber:
        ids = self._valid_ids(strategy_ids)
        with self._lock:
            subscriber = self.require(uid)
            if subscriber.is_approved:
                if not ids:
                    raise ValidationError("Approved subscribers need at least one strategy")
                subscriber.approved_strategies = list(ids)
            subscriber.requested_strategies = list(ids)
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        return subscriber

    # ── Access ────────────────────────────────────────────────────────────────
    def authorize(self, uid: str | None, key: str | None) -> Subscriber:
        if not uid or not key:
            raise AccessDenied("uid and key are required", code="missing_credentials")
        subscriber = self.get(uid)
        if subscriber is None:
            raise AccessDenied("Unknown uid", code="uid_not_found")
        if not subscriber.is_approved or not subscriber.access_key:
            raise AccessDenied("uid is not approved", code="uid_not_approved")
        if not hmac.compare_digest(subscriber.access_key.encode(), str(key).encode()):
            raise AccessDenied("uid and key do not match", code="uid_credentials_mismatch")
        return subscriber

    def verify_access(self, uid: str | None, key: str | None) -> Optional[Subscriber]:
        try:
            return self.authorize(uid, key)
        except AccessDenied:
            return None

    # ── User settings ─────────────────────────────────────────────────────────
    def set_auto_trading(self, uid: str, enabled: bool) -> Subscriber:
        with self._lock:
            subscriber = self.require(uid)
            if enabled and subscriber.exchange is None:
                raise ValidationError("Connect an exchange account before enabling auto-trading")
            subscriber.auto_trading_enabled = bool(enabled)
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        logger.info(f"Auto-trading {'enabled' if enabled else 'disabled'}: uid={uid}")
        return subscriber

    def connect_exchange(self, uid: str, api_key: str, api_secret: str, testnet: bool = False) -> Subscriber:
        api_key, api_secret = (api_key or "").strip(), (api_secret or "").strip()
        if not api_key or not api_secret:
            raise ValidationError("apiKey and apiSecret are required")
        with self._lock:
            subscriber = self.require(uid)
            subscriber.exchange = ExchangeConnection(api_key=api_key, api_secret=api_secret, testnet=bool(testnet))
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        logger.info(f"Exchange connected: uid={uid} testnet={bool(testnet)}")
        return subscriber

    def disconnect_exchange(self, uid: str) -> Subscriber:
        with self._lock:
            subscriber = self.require(uid)
            subscriber.exchange = None
            subscriber.auto_trading_enabled = False
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        logger.info(f"Exchange disconnected: uid={uid}")
        return subscriber

    def update_settings(
        self,
        uid: str,
        investment_amount: float | None = None,
        leverage: int | None = None,
        symbol: str | None = None,
    ) -> Subscriber:
        """symbol="" unpins the symbol; None leaves a field untouched."""
        with self._lock:
            subscriber = self.require(uid)
            settings = subscriber.settings
            if investment_amount is not None:
                try:
                    amount = float(investment_amount)
                except (TypeError, ValueError):
                    raise ValidationError("investmentAmount must be a number") from None
                if amount < 0:
                    raise ValidationError("investmentAmount cannot be negative")
                settings.investment_amount = amount
            if leverage is not None:
                try:
                    lev = int(leverage)
                except (TypeError, ValueError):
                    raise ValidationError("leverage must be an integer") from None
                if not 1 <= lev <= MAX_LEVERAGE:
                    raise ValidationError(f"leverage must be between 1 and {MAX_LEVERAGE}")
                settings.leverage = lev
            if symbol is not None:
                settings.symbol = format_symbol(symbol) or None
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        return subscriber

    # ── Delivery ──────────────────────────────────────────────────────────────
    def record_delivery(self, uid: str, signal: Signal, result: ExecutionResult | None = None) -> bool:
        """
        Append a delivered signal to the subscriber's history and apply the
        execution result to its positions.

        The subscriber is re-read under the lock: if it was denied while the
        order was in flight, nothing is written and False is returned.
        """
        with self._lock:
            subscriber = self.get(uid)
            if subscriber is None or not subscriber.is_approved:
                logger.info(f"Delivery skipped, uid={uid} no longer approved")
                return False

            copy = signal.copy_for(uid)
            if result is not None:
                copy.auto_trading_executed = result.executed
                copy.execution_reason = result.reason
                copy.status = result.status()
                if result.executed:
                    self._apply(subscriber, result)
            else:
                copy.status = "delivered"

            self.store.append_user_signal(uid, copy)
            subscriber.touch()
            self.store.save_subscriber(subscriber)
        return True

    @staticmethod
    def _apply(subscriber: Subscriber, result: ExecutionResult) -> None:
        if result.closed_contract:
            subscriber.positions = [p for p in subscriber.positions if p.contract != result.closed_contract]
            if result.paper:
                subscriber.paper_balance += result.realised_pnl
        if result.position is not None:
            contract = result.position.contract
            subscriber.positions = [p for p in subscriber.positions if p.contract != contract]
            subscriber.positions.append(result.position)
