"""
Rental Lifecycle Sweeper.

Periodic background job started with the application:
1. Completes every started rental whose end date has passed
2. Optionally promotes approved rentals whose start date has arrived
3. Retries gateway cancellations parked in the dead letter queue

Each rental and each queue item is handled in its own session and
transaction, so one failure never blocks the rest of the run. Failed
items are picked up again on the next run.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select, or_, and_
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.exceptions import GatewayError
from backend.app.core.observability import bind_correlation_id
from backend.app.db.session import AsyncSessionLocal
from backend.app.domain.rentals.completion import SWEEP_COMPLETABLE, complete_rental, load_rental_for_update
from backend.app.domain.rentals.inventory import lock_unit, occupy_unit, refresh_vehicle_status
from backend.app.domain.rentals.state_machine import transition_rental
from backend.app.models.dlq import DeadLetterQueue, DLQStatus, DLQTask
from backend.app.models.rental import Rental
from backend.app.models.rental_enums import ApprovalStatus, RentalStatus
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.payment_gateway import payment_gateway

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    completed: int = 0
    failed: int = 0
    promoted: int = 0
    cancels_retried: int = 0
    cancels_archived: int = 0


def _awaiting_start():
    return or_(
        Rental.status == RentalStatus.APPROVED,
        and_(
            Rental.status == RentalStatus.CONFIRMED,
            Rental.admin_approval_status == ApprovalStatus.APPROVED
        )
    )


class RentalLifecycleSweeper:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        gateway=None,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
        promote_approved: Optional[bool] = None,
        max_gateway_retries: Optional[int] = None
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.gateway = gateway or payment_gateway
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.sweeper_interval_seconds
        self.initial_delay_seconds = (
            initial_delay_seconds if initial_delay_seconds is not None else settings.sweeper_initial_delay_seconds
        )
        self.promote_approved = promote_approved if promote_approved is not None else settings.sweeper_promote_approved
        self.max_gateway_retries = max_gateway_retries or settings.gateway_retry_max_attempts
        self._task: Optional[asyncio.Task] = None

    # Completion

    async def _expired_rental_ids(self, today: date) -> list[int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Rental.id).where(
                    Rental.status.in_(list(SWEEP_COMPLETABLE)),
                    Rental.end_date < today
                ).order_by(Rental.end_date, Rental.id)
            )
            return list(result.scalars().all())

    async def _complete_one(self, rental_id: int, today: date) -> bool:
        """Returns False when the rental no longer qualifies."""
        async with self.session_factory() as db:
            rental = await load_rental_for_update(db, rental_id)
            if rental.status not in SWEEP_COMPLETABLE or rental.end_date >= today:
                return False

            await complete_rental(db, rental, SWEEP_COMPLETABLE, actor=None, reason="expired")
            await db.commit()
            return True

    # Promotion

    async def _startable_rental_ids(self, today: date) -> list[int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Rental.id).where(
                    _awaiting_start(),
                    Rental.start_date <= today,
                    Rental.end_date > today
                ).order_by(Rental.start_date, Rental.id)
            )
            return list(result.scalars().all())

    async def _promote_one(self, rental_id: int, today: date) -> bool:
        async with self.session_factory() as db:
            rental = await load_rental_for_update(db, rental_id)
            awaiting = rental.status == RentalStatus.APPROVED or (
                rental.status == RentalStatus.CONFIRMED
                and rental.admin_approval_status == ApprovalStatus.APPROVED
            )
            if not awaiting or rental.start_date > today:
                return False

            transition_rental(rental, RentalStatus.ACTIVE)
            if rental.unit_id is not None:
                unit = await lock_unit(db, rental.unit_id)
                if unit is not None:
                    occupy_unit(unit)
                await refresh_vehicle_status(db, rental.vehicle_id)

            await log_event(
                db,
                action=AuditAction.RENTAL_ACTIVATED,
                rental_id=rental.id,
                metadata={"start_date": rental.start_date.isoformat(), "reason": "start_date_reached"}
            )
            await db.commit()
            return True

    # Dead letter retries

    async def _pending_cancel_ids(self) -> list[int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(DeadLetterQueue.id).where(
                    DeadLetterQueue.task_name == DLQTask.GATEWAY_CANCEL,
                    DeadLetterQueue.status.in_([DLQStatus.FAILED, DLQStatus.RETRYING])
                ).order_by(DeadLetterQueue.id)
            )
            return list(result.scalars().all())

    async def _retry_cancel(self, item_id: int) -> DLQStatus:
        async with self.session_factory() as db:
            item = await db.get(DeadLetterQueue, item_id)
            item.status = DLQStatus.RETRYING
            item.retry_count += 1
            item.last_retry_at = datetime.now(timezone.utc)

            order_id = (item.payload or {}).get("order_id")
            try:
                await self.gateway.cancel(order_id)
                item.status = DLQStatus.PROCESSED
                logger.info("Gateway cancel for order %s succeeded on retry %d", order_id, item.retry_count)
            except GatewayError as e:
                item.error_message = f"{e.message}: {e.details}"
                if item.retry_count >= self.max_gateway_retries:
                    item.status = DLQStatus.ARCHIVED
                    logger.error(
                        "Gateway cancel for order %s abandoned after %d attempts",
                        order_id, item.retry_count
                    )
                else:
                    item.status = DLQStatus.FAILED

            await db.commit()
            return item.status

    # Run

    async def run_once(self, today: Optional[date] = None) -> SweepReport:
        """
        Execute one sweep.

        Args:
            today: Reference date (defaults to the current date)

        Returns:
            Per-run counts
        """
        today = today or date.today()
        report = SweepReport()

        for rental_id in await self._expired_rental_ids(today):
            try:
                if await self._complete_one(rental_id, today):
                    report.completed += 1
            except Exception:
                report.failed += 1
                logger.exception("Sweeper failed to complete rental %s", rental_id)

        if self.promote_approved:
            for rental_id in await self._startable_rental_ids(today):
                try:
                    if await self._promote_one(rental_id, today):
                        report.promoted += 1
                except Exception:
                    report.failed += 1
                    logger.exception("Sweeper failed to activate rental %s", rental_id)

        for item_id in await self._pending_cancel_ids():
            try:
                outcome = await self._retry_cancel(item_id)
            except Exception:
                report.failed += 1
                logger.exception("Sweeper failed to process dead letter item %s", item_id)
                continue
            if outcome == DLQStatus.PROCESSED:
                report.cancels_retried += 1
            elif outcome == DLQStatus.ARCHIVED:
                report.cancels_archived += 1

        logger.info(
            "Lifecycle sweep for %s: %d completed, %d promoted, %d failed, %d cancels retried, %d archived",
            today, report.completed, report.promoted, report.failed,
            report.cancels_retried, report.cancels_archived
        )
        return report

    async def _loop(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            bind_correlation_id(f"sweep-{uuid.uuid4().hex[:12]}")
            try:
                await self.run_once()
            except Exception:
                # Store unreachable; try again next interval
                logger.exception("Lifecycle sweep aborted")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="rental-lifecycle-sweeper")
            logger.info("Lifecycle sweeper started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Lifecycle sweeper stopped")


lifecycle_sweeper = RentalLifecycleSweeper()


def get_lifecycle_sweeper() -> RentalLifecycleSweeper:
    """
    FastAPI dependency returning the application sweeper.
    """
    return lifecycle_sweeper
