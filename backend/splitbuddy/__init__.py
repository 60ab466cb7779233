"""
splitbuddy/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - `flask db upgrade` and `flask balances ...` without serving

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging for the backend.splitbuddy package
  3. Initialise SQLAlchemy via init_app()
  4. Register the route blueprints under /api/v1 and the CLI group
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# ── Custom JSON provider ───────────────────────────────────────────────────
# Monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.splitbuddy.extensions import db
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Side-effect imports: populate SQLAlchemy's MetaData for Alembic.
    with app.app_context():
        from backend.splitbuddy.models import (  # noqa: F401
            balance_aggregate,
            expense,
            friendship,
            group,
            membership,
            participant,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    from backend.splitbuddy.cli import balances_cli
    app.cli.add_command(balances_cli)

    return app


def _configure_logging(app: Flask) -> None:
    """
    One stream handler on the package logger; service modules log through
    logging.getLogger(__name__) and propagate to it.
    """
    package_logger = logging.getLogger("backend.splitbuddy")
    package_logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # create_app() runs once per test; keep a single handler.
    if not any(getattr(h, "_splitbuddy", False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._splitbuddy = True
        package_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    from backend.splitbuddy.routes.admin import admin_bp
    from backend.splitbuddy.routes.balances import balances_bp
    from backend.splitbuddy.routes.expenses import expenses_bp

    app.register_blueprint(expenses_bp, url_prefix="/api/v1/expenses")
    app.register_blueprint(balances_bp, url_prefix="/api/v1/balances")
    app.register_blueprint(admin_bp,    url_prefix="/api/v1/admin")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD (400) or a registered code (400 / 422)
      Exception       → generic INTERNAL_ERROR (500); traceback logged, never returned
    """
    from backend.splitbuddy.errors import AppError, ErrorCode

    known_codes = set(vars(ErrorCode).values())

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        # Routes never catch AppError: they let it propagate here.
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns the FIRST schema error only. A message that is itself a
        registered ErrorCode (e.g. DUPLICATE_PARTICIPANT) becomes the code.
        """
        field, raw_message = _first_message(error.messages)
        status = 400

        if raw_message in known_codes:
            code = raw_message
            message, status = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        body = {"error": {"code": code, "message": message}}
        if field is not None:
            body["error"]["field"] = field
        return jsonify(body), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error  # 404 / 405 / malformed JSON keep their status
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


def _first_message(messages, field: str | None = None) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages to the first leaf.

    {"participants": {0: {"amount": ["..."]}}} → ("participants", "...")
    The reported field is the top-level one; "_schema" maps to None.
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            if field is None and isinstance(key, str):
                field = None if key == "_schema" else key
            return _first_message(value, field)
        return field, "Invalid input."
    if isinstance(messages, list):
        if not messages:
            return field, "Invalid value."
        return _first_message(messages[0], field)
    return field, str(messages)


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development when DEBUG or
    TESTING is true.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if app.config.get("DEBUG") or app.config.get("TESTING"):
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        return response


def _code_to_message(code: str) -> tuple[str, int]:
    """
    Default message and HTTP status for a ValidationError whose message is an
    error code. Shape errors stay 400; rule violations the service layer would
    also reject keep the service's 422.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": ("Amount must have at most 2 decimal places.", 400),
        "DUPLICATE_PARTICIPANT": ("The same user_id appears more than once in participants.", 422),
        "GROUP_SOURCE_REQUIRED": ("Participants sourced from a group must carry source_id.", 422),
    }
    return _messages.get(code, ("Invalid input.", 400))
