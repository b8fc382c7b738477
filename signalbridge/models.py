# signalbridge/models.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Subscriber status values
NOT_REGISTERED = "not_registered"
PENDING = "pending"
APPROVED = "approved"
DENIED = "denied"

# Signal actions / sides
OPEN = "open"
CLOSE = "close"
LONG = "long"
SHORT = "short"
FLAT = "flat"

MAX_LEVERAGE = 125


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:16]}"


def mask_key(value: Optional[str]) -> Optional[str]:
    """Show only the first and last four characters of an API key."""
    if not value:
        return None
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"


# ── Strategies ────────────────────────────────────────────────────────────────
@dataclass
class Strategy:
    id: str
    name: str
    description: Optional[str] = None
    active: bool = True
    aliases: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "active": self.active,
            "aliases": sorted(self.aliases),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Strategy":
        return cls(
            id=d["id"],
            name=d["name"],
            description=d.get("description"),
            active=bool(d.get("active", True)),
            aliases=list(d.get("aliases") or []),
            created_at=d.get("createdAt") or utcnow(),
            updated_at=d.get("updatedAt") or utcnow(),
        )

    def summary(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name}


# ── Positions ─────────────────────────────────────────────────────────────────
@dataclass
class Position:
    contract: str
    size: float  # signed; > 0 long, < 0 short
    leverage: int = 1
    margin: float = 0.0
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealised_pnl: float = 0.0
    opened_at: str = field(default_factory=utcnow)
    order_id: Optional[str] = None

    @property
    def side(self) -> str:
        return LONG if self.size > 0 else SHORT

    @property
    def value(self) -> float:
        return abs(self.size) * self.mark_price

    @property
    def pnl_percentage(self) -> float:
        if not self.margin:
            return 0.0
        return self.unrealised_pnl / self.margin * 100

    def mark(self, price: float) -> None:
        """Refresh mark price and unrealised P&L (linear USDT contract)."""
        self.mark_price = price
        self.unrealised_pnl = (price - self.entry_price) * self.size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract": self.contract,
            "size": self.size,
            "side": self.side,
            "leverage": self.leverage,
            "margin": round(self.margin, 8),
            "entryPrice": self.entry_price,
            "markPrice": self.mark_price,
            "pnl": round(self.unrealised_pnl, 8),
            "pnlPercentage": round(self.pnl_percentage, 4),
            "value": round(self.value, 8),
            "openedAt": self.opened_at,
            "orderId": self.order_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Position":
        return cls(
            contract=d["contract"],
            size=float(d.get("size", 0)),
            leverage=max(1, int(float(d.get("leverage") or 1))),
            margin=float(d.get("margin", 0)),
            entry_price=float(d.get("entryPrice", 0)),
            mark_price=float(d.get("markPrice", 0)),
            unrealised_pnl=float(d.get("pnl", 0)),
            opened_at=d.get("openedAt") or utcnow(),
            order_id=d.get("orderId"),
        )


# ── Subscribers ───────────────────────────────────────────────────────────────
@dataclass
class ExchangeConnection:
    api_key: str
    api_secret: str
    testnet: bool = False
    connected_at: str = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "apiSecret": self.api_secret,
            "testnet": self.testnet,
            "connectedAt": self.connected_at,
        }

    def public_dict(self) -> Dict[str, Any]:
        return {
            "connected": True,
            "maskedApiKey": mask_key(self.api_key),
            "testnet": self.testnet,
            "lastConnectedAt": self.connected_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExchangeConnection":
        return cls(
            api_key=d["apiKey"],
            api_secret=d["apiSecret"],
            testnet=bool(d.get("testnet", False)),
            connected_at=d.get("connectedAt") or utcnow(),
        )


@dataclass
class TradingSettings:
    investment_amount: float = 100.0
    leverage: int = 1
    symbol: Optional[str] = None  # pinned contract; None accepts any symbol

    def to_dict(self) -> Dict[str, Any]:
        return {
            "investmentAmount": self.investment_amount,
            "leverage": self.leverage,
            "symbol": self.symbol,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TradingSettings":
        return cls(
            investment_amount=float(d.get("investmentAmount", 100.0)),
            leverage=int(d.get("leverage", 1)),
            symbol=d.get("symbol"),
        )


@dataclass
class Subscriber:
    uid: str
    status: str = NOT_REGISTERED
    requested_strategies: List[str] = field(default_factory=list)
    approved_strategies: List[str] = field(default_factory=list)
    access_key: Optional[str] = None
    auto_trading_enabled: bool = False
    exchange: Optional[ExchangeConnection] = None
    settings: TradingSettings = field(default_factory=TradingSettings)
    positions: List[Position] = field(default_factory=list)
    paper_balance: float = 1000.0
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)
    approved_at: Optional[str] = None

    @property
    def is_approved(self) -> bool:
        return self.status == APPROVED

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Full document, secrets included. Storage only; never returned over HTTP."""
        return {
            "uid": self.uid,
            "status": self.status,
            "requestedStrategies": list(self.requested_strategies),
            "approvedStrategies": list(self.approved_strategies),
            "accessKey": self.access_key,
            "autoTradingEnabled": self.auto_trading_enabled,
            "exchange": self.exchange.to_dict() if self.exchange else None,
            "settings": self.settings.to_dict(),
            "positions": [p.to_dict() for p in self.positions],
            "paperBalance": self.paper_balance,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "approvedAt": self.approved_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Subscriber":
        exchange = d.get("exchange")
        return cls(
            uid=d["uid"],
            status=d.get("status", NOT_REGISTERED),
            requested_strategies=list(d.get("requestedStrategies") or []),
            approved_strategies=list(d.get("approvedStrategies") or []),
            access_key=d.get("accessKey"),
            auto_trading_enabled=bool(d.get("autoTradingEnabled", False)),
            exchange=ExchangeConnection.from_dict(exchange) if exchange else None,
            settings=TradingSettings.from_dict(d.get("settings") or {}),
            positions=[Position.from_dict(p) for p in d.get("positions") or []],
            paper_balance=float(d.get("paperBalance", 1000.0)),
            created_at=d.get("createdAt") or utcnow(),
            updated_at=d.get("updatedAt") or utcnow(),
            approved_at=d.get("approvedAt"),
        )

    def public_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "status": self.status,
            "requestedStrategies": list(self.requested_strategies),
            "approvedStrategies": list(self.approved_strategies),
            "autoTradingEnabled": self.auto_trading_enabled,
            "exchange": self.exchange.public_dict() if self.exchange else {"connected": False},
            "settings": self.settings.to_dict(),
            "positions": [p.to_dict() for p in self.positions],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "approvedAt": self.approved_at,
        }


# ── Signals ───────────────────────────────────────────────────────────────────
@dataclass
class Signal:
    indicator: str
    symbol: str
    action: str
    side: str
    strategy_id: Optional[str] = None
    size: Optional[float] = None
    leverage: Optional[int] = None
    price: Optional[float] = None
    status: str = "received"
    id: str = field(default_factory=lambda: new_id("sig_"))
    timestamp: str = field(default_factory=utcnow)
    uid: Optional[str] = None
    auto_trading_executed: Optional[bool] = None
    execution_reason: Optional[str] = None
    delivered: Optional[int] = None
    source: str = "webhook"

    def copy_for(self, uid: str) -> "Signal":
        """Per-subscriber copy sharing the signal id and timestamp."""
        return Signal.from_dict({**self.to_dict(), "uid": uid, "delivered": None})

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "indicator": self.indicator,
            "symbol": self.symbol,
            "action": self.action,
            "side": self.side,
            "strategyId": self.strategy_id,
            "size": self.size,
            "leverage": self.leverage,
            "price": self.price,
            "status": self.status,
            "source": self.source,
        }
        if self.uid is not None:
            out["uid"] = self.uid
        if self.auto_trading_executed is not None:
            out["autoTradingExecuted"] = self.auto_trading_executed
        if self.execution_reason is not None:
            out["executionReason"] = self.execution_reason
        if self.delivered is not None:
            out["delivered"] = self.delivered
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Signal":
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            indicator=d.get("indicator") or "",
            symbol=d.get("symbol") or "",
            action=d.get("action") or OPEN,
            side=d.get("side") or LONG,
            strategy_id=d.get("strategyId"),
            size=d.get("size"),
            leverage=d.get("leverage"),
            price=d.get("price"),
            status=d.get("status") or "received",
            uid=d.get("uid"),
            auto_trading_executed=d.get("autoTradingExecuted"),
            execution_reason=d.get("executionReason"),
            delivered=d.get("delivered"),
            source=d.get("source") or "webhook",
        )


@dataclass
class ExecutionResult:
    executed: bool
    reason: Optional[str] = None
    position: Optional[Position] = None  # opened/replaced position
    closed_contract: Optional[str] = None
    order_id: Optional[str] = None
    realised_pnl: float = 0.0
    paper: bool = True

    def status(self) -> str:
        if self.executed:
            return "executed"
        return f"execution_failed: {self.reason}" if self.reason else "delivered"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executed": self.executed,
            "reason": self.reason,
            "position": self.position.to_dict() if self.position else None,
            "closedContract": self.closed_contract,
            "orderId": self.order_id,
            "realisedPnl": round(self.realised_pnl, 8),
            "mode": "paper" if self.paper else "live",
        }


# ── Webhook registration ──────────────────────────────────────────────────────
@dataclass
class WebhookRegistration:
    secret: str
    routes: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret": self.secret,
            "routes": list(self.routes),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WebhookRegistration":
        return cls(
            secret=d["secret"],
            routes=list(d.get("routes") or []),
            created_at=d.get("createdAt") or utcnow(),
            updated_at=d.get("updatedAt") or utcnow(),
        )
