# signalbridge/signing.py
"""Request signers for the exchange REST APIs.

Two schemes are supported and chosen by configuration (`EXCHANGE_SIGNER`):

* ``gate``    – Gate.io APIv4: hex HMAC-SHA512 over
  ``METHOD\\nPATH\\nQUERY\\nSHA512(body)\\nTIMESTAMP`` with Unix-second timestamps.
* ``bithumb`` – base64 HMAC-SHA512 over
  ``METHOD PATH\\nTIMESTAMP\\nQUERY\\nSHA512(body)`` with millisecond timestamps.

Signatures and secrets are never logged.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Dict, Optional


def body_hash(body: Optional[str]) -> str:
    return hashlib.sha512((body or "").encode("utf-8")).hexdigest()


class Signer:
    name = "base"

    def timestamp(self) -> str:
        raise NotImplementedError

    def canonical(self, method: str, path: str, query: str, body: Optional[str], timestamp: str) -> str:
        raise NotImplementedError

    def digest(self, secret: str, payload: str) -> bytes:
        return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha512).digest()

    def sign(
        self,
        method: str,
        path: str,
        query: Optional[str],
        body: Optional[str],
        secret: str,
        timestamp: str,
    ) -> str:
        raise NotImplementedError

    def headers(
        self,
        api_key: str,
        secret: str,
        method: str,
        path: str,
        query: Optional[str] = "",
        body: Optional[str] = "",
    ) -> Dict[str, str]:
        """Signed headers for one request. A fresh timestamp is taken on every call."""
        raise NotImplementedError


class GateSigner(Signer):
    name = "gate"

    def timestamp(self) -> str:
        return str(int(time.time()))

    def canonical(self, method, path, query, body, timestamp) -> str:
        return "\n".join([method.upper(), path, query or "", body_hash(body), str(timestamp)])

    def sign(self, method, path, query, body, secret, timestamp) -> str:
        return self.digest(secret, self.canonical(method, path, query, body, timestamp)).hex()

    def headers(self, api_key, secret, method, path, query="", body="") -> Dict[str, str]:
        ts = self.timestamp()
        return {
            "KEY": api_key,
            "Timestamp": ts,
            "SIGN": self.sign(method, path, query, body, secret, ts),
        }


class BithumbSigner(Signer):
    name = "bithumb"

    def timestamp(self) -> str:
        return str(int(time.time() * 1000))

    def canonical(self, method, path, query, body, timestamp) -> str:
        return f"{method.upper()} {path}\n{timestamp}\n{query or ''}\n{body_hash(body)}"

    def sign(self, method, path, query, body, secret, timestamp) -> str:
        digest = self.digest(secret, self.canonical(method, path, query, body, timestamp))
        return base64.b64encode(digest).decode("ascii")

    def headers(self, api_key, secret, method, path, query="", body="") -> Dict[str, str]:
        ts = self.timestamp()
        return {
            "Api-Key": api_key,
            "Api-Timestamp": ts,
            "Api-Signature": self.sign(method, path, query, body, secret, ts),
            "Api-Hash": body_hash(body),
        }


SIGNERS = {
    GateSigner.name: GateSigner,
    BithumbSigner.name: BithumbSigner,
}


def get_signer(name: str) -> Signer:
    try:
        return SIGNERS[(name or "").strip().lower()]()
    except KeyError:
        raise ValueError(f"Unknown exchange signer: {name!r} (expected one of {', '.join(SIGNERS)})") from None
