# tests/test_log_buffer.py
import logging

import pytest

from signalbridge.log_buffer import RingBufferHandler, redact


@pytest.fixture
def ring():
    handler = RingBufferHandler(capacity=3)
    log = logging.getLogger("signalbridge.test_ring")
    log.setLevel(logging.INFO)
    log.addHandler(handler)
    yield log, handler
    log.removeHandler(handler)


def test_keeps_only_newest_records(ring):
    log, handler = ring
    for n in range(5):
        log.info(f"message {n}")
    assert [r["message"] for r in handler.records()] == ["message 2", "message 3", "message 4"]
    assert [r["message"] for r in handler.records(limit=1)] == ["message 4"]
    assert handler.records()[0]["level"] == "info"


def test_below_level_is_ignored(ring):
    log, handler = ring
    log.debug("noise")
    assert handler.records() == []


def test_clear(ring):
    log, handler = ring
    log.warning("x")
    handler.clear()
    assert handler.records() == []


def test_records_are_redacted(ring):
    log, handler = ring
    log.info("GET /api/user/signals?uid=trader1&key=abc123")
    (entry,) = handler.records()
    assert "abc123" not in entry["message"]
    assert "uid=trader1" in entry["message"]


@pytest.mark.parametrize(
    "raw,hidden",
    [
        ("secret=s3cr3t", "s3cr3t"),
        ('{"apiSecret": "topsecret", "symbol": "BTC_USDT"}', "topsecret"),
        ("'token': 'tkn-1'", "tkn-1"),
        ("SIGN=deadbeef", "deadbeef"),
    ],
)
def test_redact(raw, hidden):
    cleaned = redact(raw)
    assert hidden not in cleaned
    assert "***" in cleaned
