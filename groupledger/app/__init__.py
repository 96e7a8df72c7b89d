"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and `flask db migrate` works without starting a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Serialise Decimal as string (monetary amounts are never JSON numbers)
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError as SchemaValidationError
from werkzeug.exceptions import HTTPException

from groupledger.config import config_by_name, validate_production_config


class DecimalJSONProvider(DefaultJSONProvider):
    """
    Serialises Decimal as str so jsonify() produces string amounts.

    Example: Decimal("10.50") → "10.50" (not 10.5)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Unknown names fall back to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    from groupledger.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # Populate SQLAlchemy metadata for create_all() and Alembic.
    with app.app_context():
        from groupledger.app.models import (  # noqa: F401
            balance,
            expense,
            expense_split,
            group,
            membership,
            settlement,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Sets the level of the app logger and the groupledger.* module loggers.
    Handlers are left to Flask's default (stderr) unless the root logger
    already has some.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    app.logger.setLevel(level)
    package_logger = logging.getLogger("groupledger")
    package_logger.setLevel(level)
    if not package_logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    from groupledger.app.routes.balances import balances_bp
    from groupledger.app.routes.expenses import expenses_bp
    from groupledger.app.routes.groups import groups_bp
    from groupledger.app.routes.settlements import settlements_bp
    from groupledger.app.routes.users import users_bp

    app.register_blueprint(users_bp,       url_prefix="/api/v1/users")
    app.register_blueprint(groups_bp,      url_prefix="/api/v1/groups")
    # expenses_bp owns both /groups/<id>/expenses and /expenses/<id>.
    app.register_blueprint(expenses_bp,    url_prefix="/api/v1")
    app.register_blueprint(balances_bp,    url_prefix="/api/v1/groups")
    app.register_blueprint(settlements_bp, url_prefix="/api/v1/groups")


def _first_schema_error(messages) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages ({"values": {0: ["..."]}}) and
    returns (top-level field, first message).
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            field = None if key == "_schema" else key
            _, message = _first_schema_error(value)
            return (field if isinstance(field, str) else None), message
    if isinstance(messages, list) and messages:
        return _first_schema_error(messages[0])
    if isinstance(messages, str):
        return None, messages
    return None, "Invalid input."


def _register_error_handlers(app: Flask) -> None:
    """
    Handlers:
      AppError              → its own code and status
      marshmallow errors    → MISSING_FIELD / INVALID_FIELD / registered code (400)
      Exception             → INTERNAL_ERROR (500); traceback logged, never returned
    """
    from groupledger.app.errors import AppError, ErrorCode

    known_codes = {
        value for name, value in vars(ErrorCode).items() if not name.startswith("_")
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.http_status >= 500:
            app.logger.error("%r", error)
        else:
            app.logger.info("Request rejected: %s %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(SchemaValidationError)
    def handle_validation_error(error: SchemaValidationError):
        """One error per response: the first field and its first message."""
        field, raw_message = _first_schema_error(error.messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        # Unknown routes and wrong methods keep their 404 / 405.
        if isinstance(error, HTTPException):
            return jsonify({
                "error": {"code": error.name.upper().replace(" ", "_"), "message": error.description}
            }), error.code

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _code_to_message(code: str) -> str:
    """Default message when a schema raised a registered code as its message."""
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_TYPE": "split_type must be 'equal', 'exact' or 'percentage'.",
        "VALUES_SENT_FOR_EQUAL_SPLIT": "Do not send values when split_type is 'equal'.",
        "DUPLICATE_SPLIT_USER": "The same user appears more than once in participants.",
        "SPLIT_COUNT_MISMATCH": "values must have one entry per participant.",
        "NO_PARTICIPANTS": "participants must not be empty.",
        "NO_FIELDS_TO_UPDATE": "Send at least one field to update.",
    }
    return _messages.get(code, "Invalid input.")
