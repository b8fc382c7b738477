# ───────────────────────────────────────────────────────────────────────────────
# signalbridge/core.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from signalbridge.models import Signal, Strategy, Subscriber, WebhookRegistration


class Store(Protocol):
    """Repository behind the registries and dispatcher.

    Implementations return fresh copies; callers mutate a copy and hand it back
    through the matching save_* call. Subscribers come back in insertion order.
    Signal histories are ring buffers bounded by the sizes given at construction.
    """

    # strategies
    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        pass

    def list_strategies(self) -> List[Strategy]:
        pass

    def save_strategy(self, strategy: Strategy) -> None:
        pass

    # subscribers
    def get_subscriber(self, uid: str) -> Optional[Subscriber]:
        pass

    def list_subscribers(self) -> List[Subscriber]:
        pass

    def save_subscriber(self, subscriber: Subscriber) -> None:
        pass

    # webhook
    def get_webhook(self) -> Optional[WebhookRegistration]:
        pass

    def save_webhook(self, registration: WebhookRegistration) -> None:
        pass

    # histories (newest first on read)
    def append_strategy_signal(self, strategy_id: str, signal: Signal) -> None:
        pass

    def strategy_signals(self, strategy_id: Optional[str] = None, limit: Optional[int] = None) -> List[Signal]:
        pass

    def append_user_signal(self, uid: str, signal: Signal) -> None:
        pass

    def user_signals(self, uid: str, limit: Optional[int] = None) -> List[Signal]:
        pass


class ExchangeClient(Protocol):
    """The slice of GateClient the executor and routes depend on."""

    def get_ticker(self, pair: str) -> Dict[str, Any]:
        pass

    def get_futures_ticker(self, contract: str, settle: str = "usdt") -> Dict[str, Any]:
        pass

    def get_futures_contract(self, contract: str, settle: str = "usdt") -> Dict[str, Any]:
        pass

    def get_futures_account(self, settle: str = "usdt") -> Dict[str, Any]:
        pass

    def get_futures_positions(self, settle: str = "usdt") -> List[Dict[str, Any]]:
        pass

    def set_leverage(self, contract: str, leverage: int, settle: str = "usdt") -> Dict[str, Any]:
        pass

    def create_futures_order(
        self,
        contract: str,
        size: int,
        price: str = "0",
        tif: str = "ioc",
        reduce_only: bool = False,
        text: str = "t-webhook",
        settle: str = "usdt",
    ) -> Dict[str, Any]:
        pass
