"""
Payment reconciler tests.

Signature checks, status mapping, idempotent application and the cascade
onto rentals and units.
"""

import pytest
from datetime import date

from sqlalchemy import select, func

from backend.app.core.exceptions import GatewayError, InvalidSignatureError, ResourceNotFoundError
from backend.app.domain.payments.reconciler import PaymentReconciler
from backend.app.domain.payments.signature import compute_signature, verify_signature
from backend.app.domain.payments.status_mapping import map_gateway_status
from backend.app.models.audit_log import AuditLog
from backend.app.models.payment import Payment
from backend.app.models.rental_enums import (
    ApprovalStatus, PaymentStatus, RentalStatus, UnitStatus
)

SERVER_KEY = "SB-Mid-server-YOUR_SERVER_KEY"


@pytest.mark.parametrize("transaction_status,fraud_status,expected", [
    ("capture", "accept", PaymentStatus.SETTLEMENT),
    ("capture", "challenge", PaymentStatus.PENDING),
    ("capture", None, PaymentStatus.PENDING),
    ("settlement", None, PaymentStatus.SETTLEMENT),
    ("cancel", None, PaymentStatus.CANCEL),
    ("deny", None, PaymentStatus.DENY),
    ("expire", None, PaymentStatus.EXPIRE),
    ("failure", None, PaymentStatus.FAILURE),
    ("pending", None, PaymentStatus.PENDING),
    ("refund", None, PaymentStatus.PENDING),
    (None, None, PaymentStatus.PENDING),
    ("SETTLEMENT", None, PaymentStatus.SETTLEMENT),
])
def test_status_mapping(transaction_status, fraud_status, expected):
    assert map_gateway_status(transaction_status, fraud_status) == expected


def test_signature_is_sha512_of_fields():
    signature = compute_signature("RENTAL-1-1", "200", "300000.00", SERVER_KEY)
    assert len(signature) == 128

    payload = {"order_id": "RENTAL-1-1", "status_code": "200", "gross_amount": "300000.00", "signature_key": signature}
    assert verify_signature(payload, SERVER_KEY)
    assert not verify_signature({**payload, "gross_amount": "300000"}, SERVER_KEY)
    assert not verify_signature(payload, "another-key")
    assert not verify_signature({**payload, "signature_key": None}, SERVER_KEY)


async def test_settlement_confirms_rental(db_session, renter_user, unit, rental_factory, notification):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-A-1")

    payment = await PaymentReconciler.handle_gateway_event(
        db_session, notification("RENTAL-A-1", "settlement"), server_key=SERVER_KEY
    )
    await db_session.commit()

    assert payment.payment_status == PaymentStatus.SETTLEMENT
    assert payment.paid_at is not None
    assert payment.gateway_transaction_id == "trx-RENTAL-A-1"
    assert payment.payment_method == "bank_transfer"
    assert payment.payment_response["transaction_status"] == "settlement"

    await db_session.refresh(rental)
    assert rental.status == RentalStatus.CONFIRMED
    assert rental.admin_approval_status == ApprovalStatus.PENDING


async def test_replayed_event_is_idempotent(db_session, renter_user, unit, rental_factory, notification):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-B-1")
    event = notification("RENTAL-B-1", "capture", fraud_status="accept")

    first = await PaymentReconciler.handle_gateway_event(db_session, event, server_key=SERVER_KEY)
    await db_session.commit()
    paid_at = first.paid_at

    second = await PaymentReconciler.handle_gateway_event(db_session, event, server_key=SERVER_KEY)
    await db_session.commit()

    assert second.payment_status == PaymentStatus.SETTLEMENT
    assert second.paid_at == paid_at

    await db_session.refresh(rental)
    assert rental.status == RentalStatus.CONFIRMED

    audit_count = (await db_session.execute(
        select(func.count(AuditLog.id)).where(AuditLog.rental_id == rental.id)
    )).scalar()
    assert audit_count == 1


async def test_bad_signature_changes_nothing(db_session, renter_user, unit, rental_factory, notification):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-C-1")
    forged = notification("RENTAL-C-1", "settlement", server_key="attacker-key")

    with pytest.raises(InvalidSignatureError):
        await PaymentReconciler.handle_gateway_event(db_session, forged, server_key=SERVER_KEY)

    await db_session.refresh(rental)
    assert rental.status == RentalStatus.PENDING
    payment = (await db_session.execute(select(Payment).where(Payment.rental_id == rental.id))).scalar_one()
    assert payment.payment_status == PaymentStatus.PENDING


async def test_unknown_order_is_not_found(db_session, notification):
    with pytest.raises(ResourceNotFoundError):
        await PaymentReconciler.handle_gateway_event(
            db_session, notification("RENTAL-404-1", "settlement"), server_key=SERVER_KEY
        )


@pytest.mark.parametrize("transaction_status", ["deny", "cancel", "expire", "failure"])
async def test_failed_payment_cancels_rental_and_releases_unit(
    db_session, renter_user, unit, rental_factory, notification, transaction_status
):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-D-1")

    payment = await PaymentReconciler.handle_gateway_event(
        db_session, notification("RENTAL-D-1", transaction_status), server_key=SERVER_KEY
    )
    await db_session.commit()

    assert payment.payment_status == PaymentStatus(transaction_status)
    assert payment.paid_at is None

    await db_session.refresh(rental)
    await db_session.refresh(unit)
    assert rental.status == RentalStatus.CANCELLED
    assert unit.status == UnitStatus.AVAILABLE


async def test_failed_payment_keeps_unit_held_by_other_booking(
    db_session, renter_user, other_renter, unit, rental_factory, notification
):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-E-1")
    await rental_factory(other_renter, unit, date(2025, 1, 13), date(2025, 1, 15), order_id="RENTAL-E-2")

    await PaymentReconciler.handle_gateway_event(
        db_session, notification("RENTAL-E-1", "expire"), server_key=SERVER_KEY
    )
    await db_session.commit()

    await db_session.refresh(rental)
    await db_session.refresh(unit)
    assert rental.status == RentalStatus.CANCELLED
    assert unit.status == UnitStatus.RENTED


async def test_terminal_rental_is_left_alone(db_session, renter_user, unit, rental_factory, notification):
    rental = await rental_factory(
        renter_user, unit, date(2025, 1, 10), date(2025, 1, 13),
        status=RentalStatus.CANCELLED, payment_status=PaymentStatus.CANCEL, order_id="RENTAL-F-1"
    )

    payment = await PaymentReconciler.handle_gateway_event(
        db_session, notification("RENTAL-F-1", "settlement"), server_key=SERVER_KEY
    )
    await db_session.commit()

    assert payment.payment_status == PaymentStatus.SETTLEMENT
    await db_session.refresh(rental)
    assert rental.status == RentalStatus.CANCELLED


async def test_poll_status_applies_gateway_answer(db_session, gateway, renter_user, unit, rental_factory):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-G-1")
    gateway.status_response = {"status_code": "200", "transaction_status": "capture", "fraud_status": "accept"}

    payment = await PaymentReconciler.poll_status(db_session, gateway, "RENTAL-G-1")
    await db_session.commit()

    assert gateway.status_calls == ["RENTAL-G-1"]
    assert payment.payment_status == PaymentStatus.SETTLEMENT
    await db_session.refresh(rental)
    assert rental.status == RentalStatus.CONFIRMED


async def test_poll_status_gateway_down_leaves_state(db_session, gateway, renter_user, unit, rental_factory):
    rental = await rental_factory(renter_user, unit, date(2025, 1, 10), date(2025, 1, 13), order_id="RENTAL-H-1")
    gateway.fail_status = True

    with pytest.raises(GatewayError):
        await PaymentReconciler.poll_status(db_session, gateway, "RENTAL-H-1")
    await db_session.rollback()

    await db_session.refresh(rental)
    assert rental.status == RentalStatus.PENDING
    payment = (await db_session.execute(select(Payment).where(Payment.rental_id == rental.id))).scalar_one()
    assert payment.payment_status == PaymentStatus.PENDING
