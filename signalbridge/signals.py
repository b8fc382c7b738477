# signalbridge/signals.py
"""
TradingView alert parsing.

Alerts arrive as JSON objects or as plain ``key: value`` lines. Field names vary
between alert templates, so every field is read through an ordered fallback list
and the result is a typed Alert.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from signalbridge.errors import ValidationError
from signalbridge.gate_api import format_symbol
from signalbridge.models import CLOSE, LONG, OPEN, SHORT

INDICATOR_FIELDS = ("indicator", "strategy", "name")
SYMBOL_FIELDS = ("symbol", "ticker", "pair")
DIRECTION_FIELDS = ("direction", "side", "action")
SIZE_FIELDS = ("size", "amount", "contracts")
PRICE_FIELDS = ("price", "close")


@dataclass
class Alert:
    indicator: Optional[str]
    symbol: str
    direction: str
    action: str
    side: str
    size: Optional[float] = None
    leverage: Optional[int] = None
    price: Optional[float] = None
    secret: Optional[str] = None


def _first(data: Mapping[str, Any], fields) -> Optional[str]:
    for name in fields:
        value = data.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_direction(text: str) -> Tuple[str, str]:
    """
    Substring heuristic over free-form alert text.
    'close'/'exit' -> close, otherwise open; 'short'/'sell' -> short, otherwise long.
    """
    t = (text or "").lower()
    action = CLOSE if ("close" in t or "exit" in t) else OPEN
    side = SHORT if ("short" in t or "sell" in t) else LONG
    return action, side


def decode_body(body: Any) -> Dict[str, Any]:
    """dict passes through; JSON text is decoded; anything else is read as `key: value` lines."""
    if isinstance(body, Mapping):
        return {str(k).lower(): v for k, v in body.items()}
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if body is not None and not isinstance(body, str):
        raise ValidationError("Alert JSON must be an object")
    text = (body or "").strip()
    if not text:
        raise ValidationError("Empty alert body")

    if text[0] in "{[":
        try:
            parsed = json.loads(text)
        except ValueError:
            raise ValidationError("Malformed JSON alert body") from None
        if not isinstance(parsed, dict):
            raise ValidationError("Alert JSON must be an object")
        return {str(k).lower(): v for k, v in parsed.items()}

    out: Dict[str, Any] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        key, value = key.strip().lower(), value.strip()
        if sep and key and value:
            out[key] = value
    if not out:
        raise ValidationError("Alert body is neither JSON nor key: value lines")
    return out


def parse_alert(body: Any) -> Alert:
    data = decode_body(body)

    symbol = _first(data, SYMBOL_FIELDS)
    if not symbol:
        raise ValidationError("Missing symbol (symbol, ticker or pair)")

    parts = [str(data[f]).strip() for f in DIRECTION_FIELDS if data.get(f) is not None and str(data[f]).strip()]
    if not parts:
        raise ValidationError("Missing direction (direction, side or action)")
    direction = " ".join(parts)
    action, side = parse_direction(direction)

    leverage = _float(_first(data, ("leverage",)))
    return Alert(
        indicator=_first(data, INDICATOR_FIELDS),
        symbol=format_symbol(symbol),
        direction=direction,
        action=action,
        side=side,
        size=_float(_first(data, SIZE_FIELDS)),
        leverage=int(leverage) if leverage and leverage >= 1 else None,
        price=_float(_first(data, PRICE_FIELDS)),
        secret=_first(data, ("secret",)),
    )
