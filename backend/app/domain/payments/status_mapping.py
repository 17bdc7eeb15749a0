"""
Gateway status mapping.

Translates the gateway's (transaction_status, fraud_status) pair into one
internal PaymentStatus. Total: unknown values map to PENDING.
"""

from typing import Optional

from backend.app.models.rental_enums import PaymentStatus


# transaction_status -> internal status, for statuses that ignore fraud_status
DIRECT_STATUS_MAP = {
    "settlement": PaymentStatus.SETTLEMENT,
    "cancel": PaymentStatus.CANCEL,
    "deny": PaymentStatus.DENY,
    "expire": PaymentStatus.EXPIRE,
    "failure": PaymentStatus.FAILURE,
    "pending": PaymentStatus.PENDING,
}

# fraud_status -> internal status, for card captures
CAPTURE_FRAUD_MAP = {
    "accept": PaymentStatus.SETTLEMENT,
    "challenge": PaymentStatus.PENDING,
}


def map_gateway_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> PaymentStatus:
    """
    Map a gateway status pair to a PaymentStatus.

    capture + accept    -> settlement
    capture + challenge -> pending
    settlement          -> settlement
    cancel/deny/expire  -> same name
    failure             -> failure
    anything else       -> pending
    """
    transaction_status = (transaction_status or "").strip().lower()
    fraud_status = (fraud_status or "").strip().lower()

    if transaction_status == "capture":
        return CAPTURE_FRAUD_MAP.get(fraud_status, PaymentStatus.PENDING)

    return DIRECT_STATUS_MAP.get(transaction_status, PaymentStatus.PENDING)
