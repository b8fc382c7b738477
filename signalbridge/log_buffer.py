# signalbridge/log_buffer.py
from __future__ import annotations

import logging
import re
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List

_SECRET_FIELDS = "secret|key|token|sign|signature|apikey|api_key|api_secret|apisecret|accesskey|access_key"
_KV = re.compile(rf"(?i)\b({_SECRET_FIELDS})=([^&\s,;'\"]+)")
_JSON = re.compile(rf"(?i)([\"']?(?:{_SECRET_FIELDS})[\"']?\s*:\s*[\"'])([^\"']+)([\"'])")


def redact(text: str) -> str:
    text = _KV.sub(lambda m: f"{m.group(1)}=***", text)
    return _JSON.sub(lambda m: f"{m.group(1)}***{m.group(3)}", text)


class RedactingFilter(logging.Filter):
    """Masks secret-looking key/value pairs in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg, record.args = cleaned, None
        return True


class RingBufferHandler(logging.Handler):
    """Keeps the newest `capacity` records in memory for GET /api/logs."""

    def __init__(self, capacity: int = 100, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._records: Deque[Dict[str, str]] = deque(maxlen=capacity)
        self._buf_lock = threading.Lock()
        self.addFilter(RedactingFilter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds"),
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": redact(record.getMessage()),
            }
        except Exception:
            self.handleError(record)
            return
        with self._buf_lock:
            self._records.append(entry)

    def records(self, limit: int | None = None) -> List[Dict[str, str]]:
        """Oldest first, trimmed to the newest `limit` entries."""
        with self._buf_lock:
            items = list(self._records)
        return items[-limit:] if limit else items

    def clear(self) -> None:
        with self._buf_lock:
            self._records.clear()
