"""
Tests for chat notifications.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from trackarena.exceptions import NotificationError
from trackarena.notifier import NullNotifier, TelegramNotifier, vote_button

TOKEN = "123456789:AAH-abcdefghijklmnopqrstuvwxyz012"


def make_response(body=None, status_code=200, json_error=None):
    response = MagicMock()
    response.status_code = status_code
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.post.return_value = make_response({"ok": True, "result": {"message_id": 42}})
    return session


@pytest.fixture
def notifier(session):
    return TelegramNotifier(TOKEN, timeout=5, session=session)


class TestTelegramNotifier:
    def test_send_message(self, notifier, session):
        message_id = notifier.send_message("@channel", "New round")

        assert message_id == 42
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == f"https://api.telegram.org/bot{TOKEN}/sendMessage"
        assert kwargs["data"] == {"chat_id": "@channel", "text": "New round"}
        assert kwargs["timeout"] == 5

    def test_send_media_with_button(self, notifier, session):
        notifier.send_media("@arena", "file-1", "Night Drive", vote_button("2001"))

        data = session.post.call_args.kwargs["data"]
        assert session.post.call_args.args[0].endswith("/sendAudio")
        assert data["audio"] == "file-1"
        assert json.loads(data["reply_markup"]) == {
            "inline_keyboard": [[{"text": "🔥 Vote", "callback_data": "vote_2001"}]]
        }

    def test_edit_caption(self, notifier, session):
        notifier.edit_caption("@arena", 42, "🔥 3")

        data = session.post.call_args.kwargs["data"]
        assert session.post.call_args.args[0].endswith("/editMessageCaption")
        assert data["message_id"] == 42

    def test_rejected_by_api(self, notifier, session):
        session.post.return_value = make_response(
            {"ok": False, "error_code": 403, "description": "bot was blocked"}
        )

        with pytest.raises(NotificationError, match="bot was blocked") as exc_info:
            notifier.send_message("1001", "hi")
        assert exc_info.value.context.details["error_code"] == 403

    def test_network_error(self, notifier, session):
        session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NotificationError, match="request failed"):
            notifier.send_message("1001", "hi")

    def test_non_json_response(self, notifier, session):
        session.post.return_value = make_response(status_code=502, json_error=ValueError("no json"))

        with pytest.raises(NotificationError, match="HTTP 502"):
            notifier.send_message("1001", "hi")

    def test_empty_token(self):
        with pytest.raises(NotificationError):
            TelegramNotifier("")


class TestBestEffort:
    """try_* wrappers never raise."""

    def test_try_send_message_swallows(self, notifier, session):
        session.post.side_effect = requests.Timeout()

        assert notifier.try_send_message("1001", "hi") is None

    def test_try_send_media_swallows(self, notifier, session):
        session.post.return_value = make_response({"ok": False})

        assert notifier.try_send_media("@arena", "file-1", "caption") is None

    def test_try_edit_without_message_id(self, notifier, session):
        notifier.try_edit_caption("@arena", None, "caption")

        session.post.assert_not_called()

    def test_try_edit_swallows(self, notifier, session):
        session.post.side_effect = requests.ConnectionError()

        notifier.try_edit_caption("@arena", 42, "caption")


class TestNullNotifier:
    def test_drops_everything(self):
        notifier = NullNotifier()

        assert notifier.send_message("1001", "hi") is None
        assert notifier.try_send_media("@arena", "file-1", "c") is None
        notifier.try_edit_caption("@arena", 1, "c")
