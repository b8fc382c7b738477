# tests/conftest.py
from unittest.mock import MagicMock

import pytest

from signalbridge import create_app
from signalbridge.config import Config
from signalbridge.execution import TradeExecutor
from signalbridge.storage import MemoryStore
from signalbridge.strategies import StrategyRegistry
from signalbridge.subscribers import SubscriberRegistry
from signalbridge.webhooks import WebhookSettings

ADMIN_TOKEN = "admin-token-123"
WEBHOOK_SECRET = "hook-secret-456"


@pytest.fixture
def exchange():
    """Stand-in for GateClient; every factory call hands back this same mock."""
    client = MagicMock()
    client.get_ticker.return_value = {"currency_pair": "BTC_USDT", "last": "100"}
    client.get_futures_ticker.return_value = {"contract": "BTC_USDT", "last": "100", "mark_price": "100"}
    client.get_futures_contract.return_value = {"name": "BTC_USDT", "quanto_multiplier": "0.01"}
    client.get_futures_positions.return_value = []
    client.get_futures_account.return_value = {"total": "500", "available": "400", "currency": "USDT"}
    client.create_futures_order.return_value = {"id": 987654, "fill_price": "100"}
    client.set_leverage.return_value = {}
    return client


@pytest.fixture
def client_factory(exchange):
    return MagicMock(return_value=exchange)


@pytest.fixture
def config():
    return Config(
        admin_token=ADMIN_TOKEN,
        webhook_secret=WEBHOOK_SECRET,
        execution_mode="paper",
        secret_key="test",
    )


@pytest.fixture
def store():
    return MemoryStore(strategy_history=200, user_history=100)


@pytest.fixture
def strategies(store):
    return StrategyRegistry(store)


@pytest.fixture
def subscribers(store, strategies):
    return SubscriberRegistry(store, strategies, paper_starting_balance=1000.0)


@pytest.fixture
def webhooks(store, strategies):
    return WebhookSettings(store, strategies, initial_secret=WEBHOOK_SECRET)


@pytest.fixture
def executor(client_factory):
    return TradeExecutor(client_factory, mode="paper")


@pytest.fixture
def app(config, store, client_factory):
    app = create_app(config=config, store=store, client_factory=client_factory)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"x-admin-token": ADMIN_TOKEN}
