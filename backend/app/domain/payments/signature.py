"""
Gateway callback signature verification.

signature_key = SHA-512 hex of order_id + status_code + gross_amount + server_key
"""

import hashlib
import hmac
from typing import Any, Mapping


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(payload: Mapping[str, Any], server_key: str) -> bool:
    """
    Check a callback payload's signature_key against the expected hash.

    Fields are used exactly as delivered (gross_amount keeps its decimals).
    """
    provided = payload.get("signature_key")
    order_id = payload.get("order_id")
    status_code = payload.get("status_code")
    gross_amount = payload.get("gross_amount")

    if not provided or order_id is None or status_code is None or gross_amount is None:
        return False

    expected = compute_signature(str(order_id), str(status_code), str(gross_amount), server_key)
    return hmac.compare_digest(expected, str(provided).lower())
