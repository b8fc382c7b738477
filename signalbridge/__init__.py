# ───────────────────────────────────────────────────────────────────────────────
# signalbridge/__init__.py
from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from signalbridge.auth import init_login
from signalbridge.config import Config
from signalbridge.core import Store
from signalbridge.dispatcher import WebhookDispatcher
from signalbridge.errors import AuthenticationError, BridgeError, ExchangeError
from signalbridge.execution import ClientFactory, TradeExecutor
from signalbridge.gate_api import GateClientFactory
from signalbridge.log_buffer import RedactingFilter, RingBufferHandler
from signalbridge.notifications import EmailNotifier
from signalbridge.storage import build_store
from signalbridge.strategies import StrategyRegistry
from signalbridge.subscribers import SubscriberRegistry
from signalbridge.webhooks import WebhookSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class Bridge:
    """Per-app service graph, reachable from views as current_app.extensions["signalbridge"]."""

    config: Config
    store: Store
    strategies: StrategyRegistry
    subscribers: SubscriberRegistry
    webhooks: WebhookSettings
    executor: TradeExecutor
    dispatcher: WebhookDispatcher
    client_factory: ClientFactory
    log_handler: RingBufferHandler


def _configure_logging(config: Config) -> RingBufferHandler:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    root.setLevel(config.log_level)
    for handler in root.handlers:
        if isinstance(handler, RingBufferHandler):
            root.removeHandler(handler)
        elif not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())

    ring = RingBufferHandler(config.log_buffer_size)
    root.addHandler(ring)
    return ring


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(BridgeError)
    def bridge_error(e: BridgeError):
        if isinstance(e, (AuthenticationError, ExchangeError)):
            logger.warning(f"{type(e).__name__} ({e.code}): {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify({"ok": False, "code": e.name.lower().replace(" ", "_"), "message": e.description}), e.code

    @app.errorhandler(Exception)
    def unhandled(e: Exception):
        logger.exception("Unhandled error")
        return jsonify({"ok": False, "code": "internal_error", "message": "Internal server error"}), 500


def create_app(
    config: Config | None = None,
    store: Store | None = None,
    client_factory: ClientFactory | None = None,
) -> Flask:
    config = config or Config.from_env()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key

    log_handler = _configure_logging(config)
    init_login(app, config)

    store = store if store is not None else build_store(config)
    client_factory = client_factory or GateClientFactory(config)

    strategies = StrategyRegistry(store)
    subscribers = SubscriberRegistry(store, strategies, config.paper_starting_balance)
    webhooks = WebhookSettings(store, strategies, config.webhook_secret)
    webhooks.ensure()
    executor = TradeExecutor(client_factory, mode=config.execution_mode, notifier=EmailNotifier())
    dispatcher = WebhookDispatcher(store, strategies, subscribers, webhooks, executor)

    app.extensions["signalbridge"] = Bridge(
        config=config,
        store=store,
        strategies=strategies,
        subscribers=subscribers,
        webhooks=webhooks,
        executor=executor,
        dispatcher=dispatcher,
        client_factory=client_factory,
        log_handler=log_handler,
    )

    from signalbridge.admin import bp as admin_bp
    from signalbridge.routes import bp as routes_bp

    app.register_blueprint(routes_bp)
    app.register_blueprint(admin_bp)
    _register_error_handlers(app)

    logger.info(f"signalbridge ready: mode={config.execution_mode} store={config.store_backend}")
    return app
