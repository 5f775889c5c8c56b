"""
Core read-only endpoints.

- GET / and /status: round status
- GET /health: storage availability and current phase
- GET /metrics: Prometheus text format
"""

from flask import Blueprint, jsonify

from .state import get_arena

core_bp = Blueprint("core", __name__)


@core_bp.route("/", methods=["GET"])
@core_bp.route("/status", methods=["GET"])
def status():
    """Current round status."""
    return jsonify(get_arena().status())


@core_bp.route("/health", methods=["GET"])
def health():
    """
    Health check.

    Returns 200 while storage is writable, 503 otherwise. The arena keeps
    running in memory either way.
    """
    arena = get_arena()
    storage_info = arena.storage.get_info()
    healthy = bool(storage_info.get("available"))

    body = {
        "status": "healthy" if healthy else "degraded",
        "phase": arena.round.phase.value,
        "round_number": arena.round.round_number,
        "storage": storage_info,
    }
    return jsonify(body), 200 if healthy else 503


@core_bp.route("/metrics", methods=["GET"])
def metrics():
    """Prometheus metrics."""
    return get_arena().metrics.to_prometheus(), 200, {
        "Content-Type": "text/plain; version=0.0.4; charset=utf-8",
    }
