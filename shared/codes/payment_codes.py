"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_REJECTED = 60000
    PROVIDER_RECOVERABLE = 60001
    MALFORMED_RESPONSE = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004

    # Reconciliation (61xxx)
    INVALID_TRANSITION = 61000
    RECONCILIATION_ERROR = 61001


# Provider→internal status mapping. Anything not listed degrades to in_process.
PROVIDER_STATUS_TO_INTERNAL = {
    "mercadopago": {
        "pending": "pending",
        "approved": "approved",
        "authorized": "in_process",
        "in_process": "in_process",
        "in_mediation": "in_process",
        "rejected": "rejected",
        "cancelled": "cancelled",
        "refunded": "refunded",
    },
}

# Canonical gateway identifiers for the instant-transfer (pix) path
INSTANT_TRANSFER_METHOD_ID = "pix"
INSTANT_TRANSFER_TYPE_ID = "bank_transfer"

# Where the gateway nests the copy-and-paste transfer code
TRANSFER_CODE_PATH = ("point_of_interaction", "transaction_data", "qr_code")
