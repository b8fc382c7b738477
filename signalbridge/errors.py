# signalbridge/errors.py
"""Exception taxonomy shared by the registries, dispatcher and exchange client.

Every class carries the HTTP status the Flask error handlers answer with.
Routing misses are not errors and have no class here.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class BridgeError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "code": self.code, "message": self.message}


# ── Authentication ───────────────────────────────────────────────────────────
class AuthenticationError(BridgeError):
    status_code = 401
    code = "unauthorized"


class AccessDenied(AuthenticationError):
    """Subscriber credential failure; `code` is one of ACCESS_CODES."""

    status_code = 403


ACCESS_CODES = (
    "missing_credentials",
    "uid_not_found",
    "uid_credentials_mismatch",
    "uid_not_approved",
)


class WebhookSecretError(AuthenticationError):
    status_code = 403
    code = "invalid_webhook_secret"


# ── Validation ───────────────────────────────────────────────────────────────
class ValidationError(BridgeError):
    status_code = 400
    code = "validation_error"


class ConflictError(ValidationError):
    status_code = 409
    code = "conflict"


class NotFoundError(ValidationError):
    status_code = 404
    code = "not_found"


# ── Exchange ─────────────────────────────────────────────────────────────────
class ExchangeError(BridgeError):
    """Failure talking to the exchange. `status` is the upstream HTTP status (None for transport errors)."""

    status_code = 502
    code = "exchange_error"

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        label: Optional[str] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.label = label
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["exchange_status"] = self.status
        if self.label:
            out["label"] = self.label
        return out


class ExchangeTimeout(ExchangeError):
    status_code = 504
    code = "exchange_timeout"


class RateLimitError(ExchangeError):
    status_code = 429
    code = "exchange_rate_limited"


class ExchangeAuthError(ExchangeError):
    code = "exchange_auth_failed"


class ExchangeValidationError(ExchangeError):
    code = "exchange_rejected"
