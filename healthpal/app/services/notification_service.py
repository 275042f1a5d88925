"""
Notification Service.

In-app notification state plus the post-commit dispatcher that pushes
email/SMS through the notifier. Dispatch runs after the ledger or
consultation transaction committed; a failed delivery is logged and parked
in the dead letter queue, never propagated.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from healthpal.app.core.reliability import bounded
from healthpal.app.models.dlq import DeadLetterQueue
from healthpal.app.models.notification import Notification, NotificationType
from healthpal.app.models.user import User

logger = logging.getLogger(__name__)


class NotificationService:
    """In-app inbox. Callers own the transaction."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        notification = Notification(
            user_id=user_id, type=type, title=title, message=message, metadata_payload=metadata
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_user(
        db: AsyncSession, user_id: int, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return (await db.execute(query)).scalars().all()

    @staticmethod
    async def _mark(db: AsyncSession, user_id: int, *criteria) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False), *criteria)
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        return result.rowcount

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """False when the notification does not exist or belongs to someone else."""
        if await NotificationService._mark(db, user_id, Notification.id == notification_id):
            return True
        owned = await db.execute(
            select(Notification.id).where(Notification.id == notification_id, Notification.user_id == user_id)
        )
        return owned.scalar_one_or_none() is not None

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        return await NotificationService._mark(db, user_id)


@dataclass
class DonationNotice:
    """Snapshot of a committed donation, enough to notify without re-reading the ledger."""
    transaction_id: int
    sponsorship_id: int
    donor_id: int
    beneficiary_id: int
    amount: Any
    new_total: Any
    treatment_type: str
    is_now_funded: bool
    receipt_url: Optional[str] = None


class NotificationDispatcher:
    """
    Schedules deliveries after commit.

    `schedule` is FastAPI's BackgroundTasks.add_task in the request path; any
    callable taking (func, *args) works. Each delivery opens its own session
    on the database gateway since the request session is already closed.
    """

    def __init__(self, database, notifier, timeout: float, schedule: Callable[..., Any]):
        self.database = database
        self.notifier = notifier
        self.timeout = timeout
        self._schedule = schedule

    def donation_recorded(self, notice: DonationNotice) -> None:
        self._schedule(self.deliver_donation, notice)

    def consultation_booked(self, consultation_id: int, patient_id: int, doctor_id: int, scheduled_time: datetime) -> None:
        self._schedule(self.deliver_consultation_booked, consultation_id, patient_id, doctor_id, scheduled_time)

    def consultation_updated(self, consultation_id: int, recipient_id: int, status: str) -> None:
        self._schedule(self.deliver_consultation_update, consultation_id, recipient_id, status)

    async def _send(self, db: AsyncSession, task_name: str, coro, payload: Dict[str, Any]) -> bool:
        """
        Run one adapter call under the timeout; failures go to the DLQ.
        A channel that is not configured is skipped without a DLQ row.
        """
        error = None
        try:
            result = await bounded(coro, self.timeout)
            if isinstance(result, dict) and result.get("skipped"):
                logger.info("Notification %s skipped: %s", task_name, result.get("error"))
                return False
            if isinstance(result, dict) and not result.get("success", False):
                error = result.get("error") or "delivery reported failure"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        if error is None:
            return True

        logger.warning("Notification %s failed: %s", task_name, error)
        db.add(DeadLetterQueue(task_name=task_name, error_message=error, payload=payload))
        return False

    async def deliver_donation(self, notice: DonationNotice) -> None:
        try:
            async with self.database.session() as db:
                donor = await db.get(User, notice.donor_id)
                beneficiary = await db.get(User, notice.beneficiary_id)
                payload = {"transaction_id": notice.transaction_id, "sponsorship_id": notice.sponsorship_id}
                patient_name = beneficiary.full_name if beneficiary else "a patient"

                if donor:
                    await self._send(
                        db, "donation_confirmation_email",
                        self.notifier.send_donation_confirmation_email(
                            donor.email, donor.full_name, notice.amount, patient_name, notice.receipt_url
                        ),
                        payload,
                    )
                    if donor.phone:
                        await self._send(
                            db, "donation_confirmation_sms",
                            self.notifier.send_donation_confirmation_sms(donor.phone, notice.amount, patient_name),
                            payload,
                        )

                if beneficiary:
                    await NotificationService.create_notification(
                        db,
                        beneficiary.id,
                        "Donation received",
                        f"You received a donation of ${notice.amount} for {notice.treatment_type}.",
                        NotificationType.DONATION_RECEIVED,
                        {**payload, "new_total": str(notice.new_total)},
                    )

                if notice.is_now_funded and beneficiary:
                    await self._send(
                        db, "sponsorship_funded_email",
                        self.notifier.send_sponsorship_funded_email(
                            beneficiary.email, beneficiary.full_name, notice.treatment_type, notice.new_total
                        ),
                        payload,
                    )
                    await NotificationService.create_notification(
                        db,
                        beneficiary.id,
                        "Sponsorship fully funded",
                        f"Your {notice.treatment_type} sponsorship reached its goal.",
                        NotificationType.SPONSORSHIP_FUNDED,
                        payload,
                    )

                await db.commit()
        except Exception:
            logger.exception("Donation notification dispatch failed for transaction %s", notice.transaction_id)

    async def deliver_consultation_booked(
        self, consultation_id: int, patient_id: int, doctor_id: int, scheduled_time: datetime
    ) -> None:
        try:
            async with self.database.session() as db:
                patient = await db.get(User, patient_id)
                doctor = await db.get(User, doctor_id)
                if patient and doctor:
                    await self._send(
                        db, "consultation_booking_email",
                        self.notifier.send_consultation_booking_email(
                            patient.email, patient.full_name, doctor.full_name,
                            scheduled_time.isoformat(), consultation_id
                        ),
                        {"consultation_id": consultation_id},
                    )
                    await NotificationService.create_notification(
                        db,
                        doctor.id,
                        "New consultation request",
                        f"{patient.full_name} booked a consultation for {scheduled_time.isoformat()}.",
                        NotificationType.CONSULTATION_UPDATE,
                        {"consultation_id": consultation_id},
                    )
                await db.commit()
        except Exception:
            logger.exception("Booking notification dispatch failed for consultation %s", consultation_id)

    async def deliver_consultation_update(self, consultation_id: int, recipient_id: int, status: str) -> None:
        try:
            async with self.database.session() as db:
                await NotificationService.create_notification(
                    db,
                    recipient_id,
                    "Consultation update",
                    f"Consultation #{consultation_id} is now {status}.",
                    NotificationType.CONSULTATION_UPDATE,
                    {"consultation_id": consultation_id, "status": status},
                )
                await db.commit()
        except Exception:
            logger.exception("Consultation update dispatch failed for consultation %s", consultation_id)


async def pending_dead_letters(db: AsyncSession, task_name: Optional[str] = None) -> list[DeadLetterQueue]:
    query = select(DeadLetterQueue).order_by(DeadLetterQueue.id)
    if task_name:
        query = query.where(DeadLetterQueue.task_name == task_name)
    result = await db.execute(query)
    return result.scalars().all()
