# tests/test_config.py
import smtplib
from unittest.mock import MagicMock

import pytest

from signalbridge.auth import AdminUser
from signalbridge.config import MAINNET_URL, TESTNET_URL, Config
from signalbridge.notifications import EmailNotifier


def test_defaults_from_empty_env():
    cfg = Config.from_env({})
    assert cfg.execution_mode == "paper"
    assert cfg.store_backend == "memory"
    assert cfg.base_url(False) == MAINNET_URL
    assert cfg.base_url(True) == TESTNET_URL
    assert cfg.secret_key


def test_env_overrides():
    cfg = Config.from_env({
        "EXECUTION_MODE": "LIVE",
        "STORE_BACKEND": "sqlite",
        "GATE_API_URL": "http://localhost:9000/api/v4/",
        "USER_SIGNAL_HISTORY": "25",
        "PAPER_STARTING_BALANCE": "5000",
        "SECRET_KEY": "fixed",
        "log_level": "ignored",
    })
    assert cfg.execution_mode == "live"
    assert cfg.gate_api_url == "http://localhost:9000/api/v4"
    assert cfg.user_signal_history == 25
    assert cfg.paper_starting_balance == 5000.0
    assert cfg.secret_key == "fixed"


@pytest.mark.parametrize(
    "env",
    [
        {"EXECUTION_MODE": "yolo"},
        {"STORE_BACKEND": "redis"},
        {"LOG_BUFFER_SIZE": "many"},
    ],
)
def test_invalid_values_fail_fast(env):
    with pytest.raises(ValueError):
        Config.from_env(env)


# ── Admin token ───────────────────────────────────────────────────────────────
def test_admin_token_plain_and_hashed():
    plain = Config(admin_token="tok")
    assert AdminUser.verify_token("tok", plain) is not None
    assert AdminUser.verify_token("nope", plain) is None
    assert AdminUser.verify_token("", plain) is None

    hashed = Config(admin_token="ignored", admin_token_hash=AdminUser.generate_token_hash("tok"))
    assert AdminUser.verify_token("tok", hashed) is not None
    assert AdminUser.verify_token("ignored", hashed) is None


def test_malformed_hash_rejects():
    assert AdminUser.verify_token("tok", Config(admin_token_hash="not-bcrypt")) is None


# ── E-mail alerts ─────────────────────────────────────────────────────────────
SMTP_ENV = {
    "SMTP_USERNAME": "bot@example.com",
    "SMTP_PASSWORD": "pw",
    "ALERT_EMAIL_TO": "ops@example.com",
}


def test_notifier_disabled_without_credentials(monkeypatch):
    calls = []
    monkeypatch.setattr(smtplib, "SMTP", lambda *a, **k: calls.append(a))
    assert EmailNotifier(env={}).send_alert("x", "y") is False
    assert calls == []


def test_notifier_sends(monkeypatch):
    smtp = MagicMock()
    monkeypatch.setattr(smtplib, "SMTP", smtp)
    assert EmailNotifier(env=SMTP_ENV).send_alert("Trade failed", "details") is True

    server = smtp.return_value.__enter__.return_value
    server.login.assert_called_once_with("bot@example.com", "pw")
    assert server.sendmail.call_args.args[1] == "ops@example.com"


def test_notifier_swallows_smtp_errors(monkeypatch):
    smtp = MagicMock(side_effect=OSError("connection refused"))
    monkeypatch.setattr(smtplib, "SMTP", smtp)
    assert EmailNotifier(env=SMTP_ENV).send_alert("x", "y") is False
