# signalbridge/strategies.py
from __future__ import annotations

import logging
import re
import threading
from typing import Iterable, List, Optional, Set

from signalbridge.core import Store
from signalbridge.errors import ConflictError, NotFoundError, ValidationError
from signalbridge.models import Strategy, utcnow

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_alias(raw: str) -> str:
    """'BTC Momentum', 'btc-momentum' and 'BTC_MOMENTUM' all become 'btcmomentum'."""
    return _NON_ALNUM.sub("", str(raw or "").lower())


def slugify(name: str) -> str:
    return _NON_ALNUM.sub("-", str(name or "").lower()).strip("-")


class StrategyRegistry:
    """Admin-managed strategies and the alias table used to match indicators."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self._lock = threading.Lock()

    def list(self) -> List[Strategy]:
        return self.store.list_strategies()

    def active(self) -> List[Strategy]:
        return [s for s in self.list() if s.active]

    def get(self, strategy_id: str) -> Optional[Strategy]:
        return self.store.get_strategy(strategy_id)

    def require(self, strategy_id: str) -> Strategy:
        strategy = self.get(strategy_id)
        if strategy is None:
            raise NotFoundError(f"Unknown strategy: {strategy_id}")
        return strategy

    def known_ids(self) -> Set[str]:
        return {s.id for s in self.list()}

    def _claim_aliases(self, strategy_id: str, name: str, extra: Iterable[str] | None) -> List[str]:
        """
        Alias set for a strategy: normalised id, name and synonyms.

        A name alias already owned by another strategy is left out (two strategies
        may share a display name); a clashing id or synonym is a ConflictError.
        """
        owners = {a: s.id for s in self.list() if s.id != strategy_id for a in s.aliases}
        required = {normalize_alias(strategy_id)}
        if isinstance(extra, str):
            extra = [extra]
        required.update(normalize_alias(a) for a in extra or ())
        required.discard("")

        for alias in sorted(required):
            if alias in owners:
                raise ConflictError(f"Alias {alias!r} already belongs to strategy {owners[alias]!r}")

        name_alias = normalize_alias(name)
        if name_alias and name_alias in owners:
            logger.warning(f"Name alias {name_alias!r} is taken by {owners[name_alias]!r}; not added to {strategy_id}")
        elif name_alias:
            required.add(name_alias)
        return sorted(required)

    def create(self, name: str, description: str | None = None, aliases: Iterable[str] | None = None) -> Strategy:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Strategy name is required")
        base = slugify(name)
        if not base:
            raise ValidationError("Strategy name must contain letters or digits")

        with self._lock:
            existing = self.known_ids()
            strategy_id, n = base, 1
            while strategy_id in existing:
                n += 1
                strategy_id = f"{base}-{n}"

            alias_set = self._claim_aliases(strategy_id, name, aliases)
            strategy = Strategy(
                id=strategy_id,
                name=name,
                description=(description or "").strip() or None,
                active=True,
                aliases=alias_set,
            )
            self.store.save_strategy(strategy)

        logger.info(f"Strategy created: {strategy.id} ({strategy.name})")
        return strategy

    def set_active(self, strategy_id: str, active: bool) -> Strategy:
        return self.update(strategy_id, active=active)

    def update(
        self,
        strategy_id: str,
        name: str | None = None,
        description: str | None = None,
        aliases: Iterable[str] | None = None,
        active: bool | None = None,
    ) -> Strategy:
        """Id is immutable; name/aliases changes rebuild the alias set."""
        with self._lock:
            strategy = self.require(strategy_id)
            if name is not None:
                if not name.strip():
                    raise ValidationError("Strategy name cannot be empty")
                strategy.name = name.strip()
            if description is not None:
                strategy.description = description.strip() or None
            if name is not None or aliases is not None:
                extra = aliases if aliases is not None else strategy.aliases
                alias_set = self._claim_aliases(strategy.id, strategy.name, extra)
                strategy.aliases = alias_set
            if active is not None:
                strategy.active = bool(active)
            strategy.updated_at = utcnow()
            self.store.save_strategy(strategy)

        logger.info(f"Strategy updated: {strategy.id} active={strategy.active}")
        return strategy

    def match_by_indicator(self, raw: str | None) -> Optional[Strategy]:
        """Exact alias lookup after normalisation. Inactive strategies are returned too."""
        key = normalize_alias(raw or "")
        if not key:
            return None
        for strategy in self.list():
            if key in strategy.aliases:
                return strategy
        return None
