# signalbridge/webhooks.py
from __future__ import annotations

import hmac
import logging
import secrets
import threading
from typing import Iterable, Optional

from signalbridge.core import Store
from signalbridge.errors import ValidationError
from signalbridge.models import WebhookRegistration, utcnow
from signalbridge.strategies import StrategyRegistry

logger = logging.getLogger(__name__)


class WebhookSettings:
    """The single webhook registration: shared secret and the admin routing allow-list.

    An empty routes list means every matched strategy may receive deliveries.
    """

    def __init__(self, store: Store, strategies: StrategyRegistry, initial_secret: str = "") -> None:
        self.store = store
        self.strategies = strategies
        self.initial_secret = initial_secret
        self._lock = threading.Lock()

    def get(self) -> Optional[WebhookRegistration]:
        return self.store.get_webhook()

    def ensure(self) -> WebhookRegistration:
        with self._lock:
            reg = self.store.get_webhook()
            if reg is None:
                reg = WebhookRegistration(secret=self.initial_secret or secrets.token_urlsafe(24))
                self.store.save_webhook(reg)
                logger.info("Webhook registration created")
            return reg

    def rotate(self) -> WebhookRegistration:
        with self._lock:
            reg = self.store.get_webhook()
            secret = secrets.token_urlsafe(24)
            if reg is None:
                reg = WebhookRegistration(secret=secret)
            else:
                reg.secret = secret
                reg.updated_at = utcnow()
            self.store.save_webhook(reg)
        logger.info("Webhook secret rotated")
        return reg

    def set_routes(self, strategy_ids: Iterable[str]) -> WebhookRegistration:
        ids = []
        for raw in strategy_ids or ():
            sid = str(raw).strip()
            if sid and sid not in ids:
                ids.append(sid)
        unknown = [sid for sid in ids if sid not in self.strategies.known_ids()]
        if unknown:
            raise ValidationError(f"Unknown strategy id(s): {', '.join(unknown)}")
        reg = self.ensure()
        with self._lock:
            reg.routes = ids
            reg.updated_at = utcnow()
            self.store.save_webhook(reg)
        logger.info(f"Webhook routes set: {ids or 'unrestricted'}")
        return reg

    def verify(self, secret: str | None) -> bool:
        if not secret:
            return False
        reg = self.ensure()
        return hmac.compare_digest(reg.secret.encode(), str(secret).encode())

    @staticmethod
    def url_for(host_url: str, reg: WebhookRegistration) -> str:
        return f"{host_url.rstrip('/')}/webhook/{reg.secret}"
