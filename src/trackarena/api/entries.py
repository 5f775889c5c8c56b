"""
Entry and voting endpoints.

These stand in for the chat bot's command and button handlers: choosing a
path, attaching a track, and voting.
"""

from flask import Blueprint, jsonify

from ..models import EntryChoice
from .state import get_arena
from .utils import (
    MAX_ID_LENGTH,
    MAX_TEXT_LENGTH,
    bad_request,
    json_body,
    require_api_key,
    validate_json_schema,
)

entries_bp = Blueprint("entries", __name__)

CHOICES = {choice.value: choice for choice in EntryChoice}


@entries_bp.route("/entries", methods=["POST"])
@require_api_key
def register_entry():
    """
    Open a pending entry.

    Request body:
    {
        "payerId": "chat user id",
        "choice": "upload" | "vote"
    }

    Returns:
        201 with the payment reference to quote when paying
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"payerId": (str, int), "choice": str},
        max_lengths={"payerId": MAX_ID_LENGTH},
    )
    if not is_valid:
        return bad_request(error)

    choice = CHOICES.get(data["choice"].lower())
    if choice is None:
        return bad_request(f"choice must be one of: {', '.join(CHOICES)}")

    entry = get_arena().register_choice(str(data["payerId"]), choice)
    return jsonify({
        "reference": entry.reference,
        "payerId": entry.payer_id,
        "choice": entry.choice.value,
    }), 201


@entries_bp.route("/entries/<payer_id>/media", methods=["POST"])
@require_api_key
def attach_media(payer_id: str):
    """
    Attach a track to a pending upload.

    Request body:
    {
        "mediaRef": "file id",
        "duration": 184,
        "title": "Track title",
        "displayName": "@artist"
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"mediaRef": str},
        optional_fields={"duration": int, "title": str, "displayName": str},
        max_lengths={
            "mediaRef": MAX_TEXT_LENGTH,
            "title": MAX_TEXT_LENGTH,
            "displayName": MAX_ID_LENGTH,
        },
    )
    if not is_valid:
        return bad_request(error)

    entry, outcome = get_arena().attach_media(
        payer_id,
        data["mediaRef"],
        duration=data.get("duration") or 0,
        title=data.get("title"),
        display_name=data.get("displayName"),
    )

    body = {"reference": entry.reference, "paid": entry.paid}
    if outcome is None:
        body["status"] = "awaiting_payment"
        return jsonify(body), 200

    body["status"] = outcome.status.value
    body["settlement"] = outcome.to_dict()
    return jsonify(body), 200 if outcome.ok else 502


@entries_bp.route("/votes", methods=["POST"])
@require_api_key
def cast_vote():
    """
    Vote for a track.

    Request body:
    {
        "voterId": "chat user id",
        "participantId": "payer id of the track"
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"voterId": (str, int), "participantId": (str, int)},
        max_lengths={"voterId": MAX_ID_LENGTH, "participantId": MAX_ID_LENGTH},
    )
    if not is_valid:
        return bad_request(error)

    votes = get_arena().cast_vote(str(data["voterId"]), str(data["participantId"]))
    return jsonify({"participantId": str(data["participantId"]), "votes": votes}), 200
