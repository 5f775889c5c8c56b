"""
TrackArena API Package.

Flask blueprints for the arena's HTTP surface.

Blueprints:
- core: status, health and metrics
- payments: payment-confirmed webhook
- entries: entry registration, media attachment and votes
"""

import logging

from flask import Flask, jsonify

from ..exceptions import ArenaError, ValidationError
from ..monitoring.middleware import setup_request_logging
from .core import core_bp
from .entries import entries_bp
from .payments import payments_bp
from .state import init_arena

logger = logging.getLogger(__name__)

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (core_bp, ""),
    (payments_bp, ""),
    (entries_bp, ""),
]


def register_blueprints(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return jsonify({"error": error.message, "details": error.context.details}), 400

    @app.errorhandler(ArenaError)
    def handle_arena_error(error: ArenaError):
        logger.error("Unhandled arena error", extra=error.to_dict())
        return jsonify({"error": error.message, "type": type(error).__name__}), 500


def create_app(arena, require_auth: bool | None = None, api_key: str | None = None) -> Flask:
    """
    Build the Flask app serving one arena.

    Args:
        arena: The Arena instance requests operate on
        require_auth: Require X-API-Key on write endpoints (from config when None)
        api_key: Expected API key (from config when None)
    """
    app = Flask(__name__)
    app.config["ARENA_REQUIRE_AUTH"] = (
        arena.config.require_auth if require_auth is None else require_auth
    )
    app.config["ARENA_API_KEY"] = arena.config.api_key if api_key is None else api_key
    app.config["MAX_CONTENT_LENGTH"] = 64 * 1024

    init_arena(app, arena)
    register_blueprints(app)
    register_error_handlers(app)
    setup_request_logging(app)
    return app
