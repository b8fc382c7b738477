# signalbridge/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

MAINNET_URL = "https://api.gateio.ws/api/v4"
TESTNET_URL = "https://fx-api-testnet.gateio.ws/api/v4"

EXECUTION_MODES = ("paper", "live")
STORE_BACKENDS = ("memory", "sqlite")


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc


@dataclass
class Config:
    admin_token: str = ""
    admin_token_hash: str = ""
    webhook_secret: str = ""

    gate_api_url: str = MAINNET_URL
    gate_testnet_api_url: str = TESTNET_URL
    exchange_signer: str = "gate"
    exchange_timeout: float = 10.0
    execution_mode: str = "paper"

    store_backend: str = "memory"
    db_path: str = "signalbridge.db"

    strategy_signal_history: int = 200
    user_signal_history: int = 100
    log_buffer_size: int = 100
    paper_starting_balance: float = 1000.0

    secret_key: str = field(default_factory=lambda: os.urandom(24).hex())
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a Config from environment variables (a `.env` file is loaded first)."""
        if env is None:
            load_dotenv()
            env = os.environ

        execution_mode = env.get("EXECUTION_MODE", "paper").strip().lower()
        if execution_mode not in EXECUTION_MODES:
            raise ValueError(f"EXECUTION_MODE must be one of: {', '.join(EXECUTION_MODES)}")
        store_backend = env.get("STORE_BACKEND", "memory").strip().lower()
        if store_backend not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of: {', '.join(STORE_BACKENDS)}")

        cfg = cls(
            admin_token=env.get("ADMIN_TOKEN", ""),
            admin_token_hash=env.get("ADMIN_TOKEN_HASH", ""),
            webhook_secret=env.get("WEBHOOK_SECRET", ""),
            gate_api_url=env.get("GATE_API_URL", MAINNET_URL).rstrip("/"),
            gate_testnet_api_url=env.get("GATE_TESTNET_API_URL", TESTNET_URL).rstrip("/"),
            exchange_signer=env.get("EXCHANGE_SIGNER", "gate").strip().lower(),
            exchange_timeout=_float(env, "EXCHANGE_TIMEOUT", 10.0),
            execution_mode=execution_mode,
            store_backend=store_backend,
            db_path=env.get("BRIDGE_DB", "signalbridge.db"),
            strategy_signal_history=_int(env, "STRATEGY_SIGNAL_HISTORY", 200),
            user_signal_history=_int(env, "USER_SIGNAL_HISTORY", 100),
            log_buffer_size=_int(env, "LOG_BUFFER_SIZE", 100),
            paper_starting_balance=_float(env, "PAPER_STARTING_BALANCE", 1000.0),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
        if env.get("SECRET_KEY"):
            cfg.secret_key = env["SECRET_KEY"]
        return cfg

    def base_url(self, testnet: bool) -> str:
        return self.gate_testnet_api_url if testnet else self.gate_api_url
