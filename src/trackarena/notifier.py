"""
Chat notifications.

Every message the arena sends is best effort: a failed notification is
logged and never blocks a phase transition, a settlement or a payout.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import requests

from .exceptions import NotificationError

logger = logging.getLogger(__name__)

Buttons = list[tuple[str, str]] | None


def vote_button(participant_id: str) -> list[tuple[str, str]]:
    """Inline vote button for a posted track."""
    return [("🔥 Vote", f"vote_{participant_id}")]


class Notifier(ABC):
    """Outbound chat capability."""

    @abstractmethod
    def send_message(self, chat_id: str, text: str, buttons: Buttons = None) -> int | None:
        """Send a text message. Returns the message id."""

    @abstractmethod
    def send_media(self, chat_id: str, media_ref: str, caption: str, buttons: Buttons = None) -> int | None:
        """Post a media file by reference. Returns the message id."""

    @abstractmethod
    def edit_caption(self, chat_id: str, message_id: int, caption: str, buttons: Buttons = None) -> None:
        """Replace the caption of a posted media message."""

    # Best-effort wrappers

    def try_send_message(self, chat_id: str, text: str, buttons: Buttons = None) -> int | None:
        try:
            return self.send_message(chat_id, text, buttons)
        except NotificationError as e:
            logger.warning("Notification to %s failed: %s", chat_id, e.message)
            return None

    def try_send_media(self, chat_id: str, media_ref: str, caption: str, buttons: Buttons = None) -> int | None:
        try:
            return self.send_media(chat_id, media_ref, caption, buttons)
        except NotificationError as e:
            logger.warning("Posting media to %s failed: %s", chat_id, e.message)
            return None

    def try_edit_caption(self, chat_id: str, message_id: int | None, caption: str, buttons: Buttons = None) -> None:
        if message_id is None:
            return
        try:
            self.edit_caption(chat_id, message_id, caption, buttons)
        except NotificationError as e:
            logger.debug("Caption update failed: %s", e.message)


class NullNotifier(Notifier):
    """Drops every message. For local runs without a bot."""

    def send_message(self, chat_id, text, buttons=None):
        logger.debug("(no notifier) %s: %s", chat_id, text)
        return None

    def send_media(self, chat_id, media_ref, caption, buttons=None):
        return None

    def edit_caption(self, chat_id, message_id, caption, buttons=None):
        return None


class TelegramNotifier(Notifier):
    """
    Notifier over the Telegram Bot API.

    Usage:
        notifier = TelegramNotifier(config.bot_token)
        notifier.send_message("@channel", "New round started")
    """

    API_BASE = "https://api.telegram.org"

    def __init__(self, bot_token: str, timeout: float = 10.0, session: requests.Session | None = None):
        if not bot_token:
            raise NotificationError("Bot token is empty", action="init")
        self._url = f"{self.API_BASE}/bot{bot_token}"
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def _keyboard(buttons: Buttons) -> str | None:
        if not buttons:
            return None
        return json.dumps({
            "inline_keyboard": [[{"text": text, "callback_data": data} for text, data in buttons]]
        })

    def _call(self, method: str, payload: dict[str, Any]) -> Any:
        payload = {k: v for k, v in payload.items() if v is not None}
        try:
            response = self.session.post(f"{self._url}/{method}", data=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"{method} request failed: {type(e).__name__}", action=method) from e
        try:
            body = response.json()
        except ValueError as e:
            raise NotificationError(f"{method} returned non-JSON (HTTP {response.status_code})", action=method) from e

        if not body.get("ok"):
            raise NotificationError(
                f"{method} rejected: {body.get('description', 'unknown error')}",
                action=method,
                details={"error_code": body.get("error_code")},
            )
        return body.get("result")

    def send_message(self, chat_id, text, buttons=None):
        result = self._call("sendMessage", {
            "chat_id": chat_id,
            "text": text,
            "reply_markup": self._keyboard(buttons),
        })
        return (result or {}).get("message_id")

    def send_media(self, chat_id, media_ref, caption, buttons=None):
        result = self._call("sendAudio", {
            "chat_id": chat_id,
            "audio": media_ref,
            "caption": caption,
            "reply_markup": self._keyboard(buttons),
        })
        return (result or {}).get("message_id")

    def edit_caption(self, chat_id, message_id, caption, buttons=None):
        self._call("editMessageCaption", {
            "chat_id": chat_id,
            "message_id": message_id,
            "caption": caption,
            "reply_markup": self._keyboard(buttons),
        })
