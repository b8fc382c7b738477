"""
Admin authentication for Flask-Login.
The admin presents a shared token in the x-admin-token header on every request;
the token is checked against a bcrypt hash (ADMIN_TOKEN_HASH) or, failing that,
the plain ADMIN_TOKEN.
"""

import hmac
import logging

import bcrypt
from flask import jsonify
from flask_login import LoginManager, UserMixin

logger = logging.getLogger(__name__)

ADMIN_HEADER = "x-admin-token"


class AdminUser(UserMixin):
    """The single admin principal, loaded per request from the token header."""

    def __init__(self, user_id="admin"):
        self.id = user_id

    @staticmethod
    def verify_token(token, config):
        """
        Check an admin token against the configured credentials.

        Args:
            token: Token taken from the request header
            config: Config carrying admin_token_hash / admin_token

        Returns:
            AdminUser if the token is valid, None otherwise
        """
        if not token:
            return None

        if config.admin_token_hash:
            try:
                if bcrypt.checkpw(token.encode("utf-8"), config.admin_token_hash.encode("utf-8")):
                    return AdminUser()
            except (ValueError, AttributeError):
                logger.error("ADMIN_TOKEN_HASH is not a valid bcrypt hash")
            return None

        if config.admin_token and hmac.compare_digest(token.encode("utf-8"), config.admin_token.encode("utf-8")):
            return AdminUser()
        return None

    @staticmethod
    def generate_token_hash(token):
        """
        Generate a bcrypt hash for an admin token.

        Args:
            token: Plain text token

        Returns:
            Bcrypt hash as string
        """
        return bcrypt.hashpw(token.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def init_login(app, config):
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        # no session logins; the header is checked on every request
        return None

    @login_manager.request_loader
    def load_user_from_request(request):
        return AdminUser.verify_token(request.headers.get(ADMIN_HEADER), config)

    @login_manager.unauthorized_handler
    def unauthorized():
        logger.warning("Admin request rejected: invalid or missing admin token")
        return jsonify({"ok": False, "code": "unauthorized", "message": "Invalid admin token"}), 401

    if not config.admin_token and not config.admin_token_hash:
        logger.warning("No ADMIN_TOKEN or ADMIN_TOKEN_HASH configured; admin endpoints will reject every request")
    return login_manager
