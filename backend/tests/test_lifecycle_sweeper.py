"""
Lifecycle sweeper tests.

Runs single sweeps against a fixed reference date.
"""

from datetime import date

from backend.app.models.dlq import DeadLetterQueue, DLQStatus, DLQTask
from backend.app.models.rental_enums import ApprovalStatus, PaymentStatus, RentalStatus, UnitStatus, VehicleStatus

TODAY = date(2025, 1, 20)


async def _status(db, rental) -> RentalStatus:
    await db.refresh(rental)
    return rental.status


async def test_sweep_completes_every_expired_rental(db_session, sweeper, renter_user, unit_factory, rental_factory):
    expired = []
    for i, status in enumerate([RentalStatus.ACTIVE, RentalStatus.CONFIRMED, RentalStatus.APPROVED]):
        target = await unit_factory(f"B 30{i} EXP")
        expired.append(await rental_factory(
            renter_user, target, date(2025, 1, 10), date(2025, 1, 15),
            status=status, payment_status=PaymentStatus.SETTLEMENT
        ))

    report = await sweeper.run_once(today=TODAY)

    assert report.completed == 3
    assert report.failed == 0
    for rental in expired:
        assert await _status(db_session, rental) == RentalStatus.COMPLETED


async def test_sweep_leaves_unexpired_and_pending(db_session, sweeper, renter_user, unit_factory, rental_factory):
    running = await rental_factory(
        renter_user, await unit_factory("B 1 RUN"), date(2025, 1, 18), date(2025, 1, 25),
        status=RentalStatus.ACTIVE, payment_status=PaymentStatus.SETTLEMENT
    )
    ends_today = await rental_factory(
        renter_user, await unit_factory("B 2 RUN"), date(2025, 1, 18), date(2025, 1, 20),
        status=RentalStatus.ACTIVE, payment_status=PaymentStatus.SETTLEMENT
    )
    unpaid = await rental_factory(renter_user, await unit_factory("B 3 RUN"), date(2025, 1, 1), date(2025, 1, 5))

    report = await sweeper.run_once(today=TODAY)

    assert report.completed == 0
    assert await _status(db_session, running) == RentalStatus.ACTIVE
    assert await _status(db_session, ends_today) == RentalStatus.ACTIVE
    assert await _status(db_session, unpaid) == RentalStatus.PENDING


async def test_completion_frees_unit_and_vehicle(db_session, sweeper, renter_user, vehicle, unit, rental_factory):
    rental = await rental_factory(
        renter_user, unit, date(2025, 1, 10), date(2025, 1, 15),
        status=RentalStatus.ACTIVE, payment_status=PaymentStatus.SETTLEMENT
    )

    await sweeper.run_once(today=TODAY)

    assert await _status(db_session, rental) == RentalStatus.COMPLETED
    await db_session.refresh(unit)
    await db_session.refresh(vehicle)
    assert unit.status == UnitStatus.AVAILABLE
    assert vehicle.status == VehicleStatus.AVAILABLE


async def test_one_failure_does_not_block_others(
    db_session, sweeper, mocker, renter_user, unit_factory, rental_factory
):
    first = await rental_factory(
        renter_user, await unit_factory("B 1 ISO"), date(2025, 1, 10), date(2025, 1, 12),
        status=RentalStatus.ACTIVE, payment_status=PaymentStatus.SETTLEMENT
    )
    second = await rental_factory(
        renter_user, await unit_factory("B 2 ISO"), date(2025, 1, 10), date(2025, 1, 13),
        status=RentalStatus.ACTIVE, payment_status=PaymentStatus.SETTLEMENT
    )

    original = sweeper._complete_one

    async def flaky(rental_id, today):
        if rental_id == first.id:
            raise RuntimeError("database hiccup")
        return await original(rental_id, today)

    mocker.patch.object(sweeper, "_complete_one", new=flaky)

    report = await sweeper.run_once(today=TODAY)

    assert report.completed == 1
    assert report.failed == 1
    assert await _status(db_session, first) == RentalStatus.ACTIVE
    assert await _status(db_session, second) == RentalStatus.COMPLETED

    # Picked up again on the next run
    mocker.stopall()
    report = await sweeper.run_once(today=TODAY)
    assert report.completed == 1
    assert await _status(db_session, first) == RentalStatus.COMPLETED


async def test_promotion_is_opt_in(db_session, sweeper, renter_user, unit, rental_factory):
    rental = await rental_factory(
        renter_user, unit, date(2025, 1, 18), date(2025, 1, 25),
        status=RentalStatus.CONFIRMED, approval=ApprovalStatus.APPROVED, payment_status=PaymentStatus.SETTLEMENT
    )

    report = await sweeper.run_once(today=TODAY)
    assert report.promoted == 0
    assert await _status(db_session, rental) == RentalStatus.CONFIRMED

    sweeper.promote_approved = True
    report = await sweeper.run_once(today=TODAY)
    assert report.promoted == 1
    assert await _status(db_session, rental) == RentalStatus.ACTIVE


async def test_promotion_keeps_unit_in_maintenance(db_session, sweeper, renter_user, unit, rental_factory):
    sweeper.promote_approved = True
    rental = await rental_factory(
        renter_user, unit, date(2025, 1, 18), date(2025, 1, 25),
        status=RentalStatus.CONFIRMED, approval=ApprovalStatus.APPROVED, payment_status=PaymentStatus.SETTLEMENT
    )
    unit.status = UnitStatus.MAINTENANCE
    await db_session.commit()

    report = await sweeper.run_once(today=TODAY)

    assert report.promoted == 1
    assert await _status(db_session, rental) == RentalStatus.ACTIVE
    await db_session.refresh(unit)
    assert unit.status == UnitStatus.MAINTENANCE


async def test_promotion_skips_future_and_unapproved(db_session, sweeper, renter_user, unit_factory, rental_factory):
    sweeper.promote_approved = True
    future = await rental_factory(
        renter_user, await unit_factory("B 1 FUT"), date(2025, 1, 22), date(2025, 1, 25),
        status=RentalStatus.CONFIRMED, approval=ApprovalStatus.APPROVED, payment_status=PaymentStatus.SETTLEMENT
    )
    unapproved = await rental_factory(
        renter_user, await unit_factory("B 2 FUT"), date(2025, 1, 18), date(2025, 1, 25),
        status=RentalStatus.CONFIRMED, payment_status=PaymentStatus.SETTLEMENT
    )

    report = await sweeper.run_once(today=TODAY)

    assert report.promoted == 0
    assert await _status(db_session, future) == RentalStatus.CONFIRMED
    assert await _status(db_session, unapproved) == RentalStatus.CONFIRMED


async def _queue_cancel(db, order_id: str) -> DeadLetterQueue:
    item = DeadLetterQueue(
        task_name=DLQTask.GATEWAY_CANCEL,
        error_message="Payment gateway unavailable",
        payload={"order_id": order_id, "rental_id": 1},
        status=DLQStatus.FAILED,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


async def test_dead_letter_cancel_is_retried(db_session, sweeper, gateway):
    item = await _queue_cancel(db_session, "RENTAL-9-1")

    report = await sweeper.run_once(today=TODAY)

    assert report.cancels_retried == 1
    assert gateway.cancelled == ["RENTAL-9-1"]
    await db_session.refresh(item)
    assert item.status == DLQStatus.PROCESSED
    assert item.retry_count == 1

    # Processed items are not retried again
    await sweeper.run_once(today=TODAY)
    assert gateway.cancelled == ["RENTAL-9-1"]


async def test_dead_letter_cancel_is_archived_after_max_retries(db_session, sweeper, gateway):
    item = await _queue_cancel(db_session, "RENTAL-9-2")
    gateway.fail_cancel = True

    first = await sweeper.run_once(today=TODAY)
    await db_session.refresh(item)
    assert first.cancels_archived == 0
    assert item.status == DLQStatus.FAILED
    assert item.retry_count == 1

    second = await sweeper.run_once(today=TODAY)
    await db_session.refresh(item)
    assert second.cancels_archived == 1
    assert item.status == DLQStatus.ARCHIVED
    assert item.retry_count == 2
