"""
Payment webhook.

The payment-verification service calls POST /payment-confirmed once it has
seen an entry fee on chain. It may call more than once for the same
reference; only the first call settles.

Responses:
    200  processed, or already processed
    202  paid upload still waiting for its track
    400  validation error (nothing changed)
    502  purchase or payer transfer failed
"""

import logging

from flask import Blueprint, jsonify

from ..chain import is_valid_address
from ..payment_ledger import NotificationStatus
from .state import get_arena
from .utils import (
    MAX_ID_LENGTH,
    bad_request,
    json_body,
    require_api_key,
    validate_json_schema,
)

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__)


@payments_bp.route("/payment-confirmed", methods=["POST"])
@require_api_key
def payment_confirmed():
    """
    Record a confirmed entry fee.

    Request body:
    {
        "reference": "base58 payment reference",
        "payerId": "chat user id",
        "amount": 0.1,
        "payerAddress": "base58 wallet address"
    }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={
            "reference": str,
            "payerId": (str, int),
            "amount": (int, float),
            "payerAddress": str,
        },
        max_lengths={"reference": MAX_ID_LENGTH, "payerId": MAX_ID_LENGTH},
    )
    if not is_valid:
        return bad_request(error)

    arena = get_arena()
    amount = data["amount"]
    if not arena.config.min_entry_amount <= amount <= arena.config.max_entry_amount:
        arena.metrics.increment("payments_rejected")
        return bad_request(
            f"Amount must be between {arena.config.min_entry_amount} "
            f"and {arena.config.max_entry_amount}"
        )

    if not is_valid_address(data["payerAddress"]):
        arena.metrics.increment("payments_rejected")
        return bad_request("payerAddress is not a valid public key")

    result = arena.record_notification(
        data["reference"].strip(),
        str(data["payerId"]),
        amount,
        data["payerAddress"],
    )

    if result.status == NotificationStatus.AWAITING_MEDIA:
        return jsonify(result.to_dict()), 202
    if result.failed:
        return jsonify(result.to_dict()), 502
    return jsonify(result.to_dict()), 200
