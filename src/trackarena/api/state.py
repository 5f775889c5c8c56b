"""
Shared state for the TrackArena API.

The Arena instance is attached to the Flask app when the app is created
and looked up per request, so tests can build as many apps as they like.
"""

from typing import TYPE_CHECKING

from flask import Flask, current_app

if TYPE_CHECKING:
    from ..arena import Arena

EXTENSION_KEY = "trackarena.arena"


def init_arena(app: Flask, arena: "Arena") -> None:
    app.extensions[EXTENSION_KEY] = arena


def get_arena() -> "Arena":
    """The Arena serving the current request."""
    return current_app.extensions[EXTENSION_KEY]
