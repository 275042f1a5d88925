"""
Consultation Service (Domain Logic).

Booking and the consultation / call status machines. Status changes go
through CONSULTATION_TRANSITIONS; calls exist only while the consultation is
accepted or in progress, and at most one call per modality is active.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from healthpal.app.core.exceptions import (
    ConflictError,
    InvalidInputError,
    InvalidTransitionError,
    ModeMismatchError,
    NotAuthorizedError,
    ResourceNotFoundError,
)
from healthpal.app.models.call import Call
from healthpal.app.models.consultation import Consultation
from healthpal.app.models.consultation_enums import (
    CallModality,
    CallStatus,
    ConsultationMode,
    ConsultationStatus,
    CONSULTATION_TRANSITIONS,
    CALLABLE_STATUSES,
)
from healthpal.app.models.enums import UserRole
from healthpal.app.models.user import User
from healthpal.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(started_at: datetime, ended_at: datetime) -> int:
    return max(0, int((as_utc(ended_at) - as_utc(started_at)).total_seconds()))


def parse_status(value: Any) -> ConsultationStatus:
    """Accepts enum members and strings; "in-progress" is read as in_progress."""
    if isinstance(value, ConsultationStatus):
        return value
    try:
        return ConsultationStatus(str(value).strip().lower().replace("-", "_"))
    except ValueError:
        raise InvalidInputError(
            f"Invalid status: {value}",
            details={"allowed": [s.value for s in ConsultationStatus]},
        )


@dataclass
class CallStartResult:
    call_id: int
    consultation_id: int
    modality: CallModality
    started_at: datetime
    consultation_status: ConsultationStatus
    force_ended_call_ids: List[int] = field(default_factory=list)


@dataclass
class CallEndResult:
    call_id: int
    consultation_id: int
    ended_at: datetime
    duration_seconds: int
    consultation_status: ConsultationStatus


class ConsultationService:

    @staticmethod
    async def book(
        db: AsyncSession,
        patient_id: int,
        doctor_id: int,
        scheduled_time: datetime,
        mode: Any,
        notes: Optional[str] = None,
        dispatcher=None,
        actor_email: Optional[str] = None,
    ) -> Consultation:
        if scheduled_time is None:
            raise InvalidInputError("consultation_date is required")
        try:
            mode = ConsultationMode(mode)
        except ValueError:
            raise InvalidInputError(
                f"Invalid mode: {mode}",
                details={"allowed": [m.value for m in ConsultationMode]},
            )

        doctor = await db.get(User, doctor_id)
        if doctor is None or doctor.role != UserRole.DOCTOR or not doctor.is_active:
            raise ResourceNotFoundError("Doctor", doctor_id)
        if doctor_id == patient_id:
            raise InvalidInputError("Cannot book a consultation with yourself")

        consultation = Consultation(
            patient_id=patient_id,
            doctor_id=doctor_id,
            scheduled_time=scheduled_time,
            mode=mode,
            status=ConsultationStatus.PENDING,
            notes=notes or "",
        )
        db.add(consultation)
        await db.flush()

        await log_event(
            db,
            AuditAction.CONSULTATION_BOOKED,
            actor_id=patient_id,
            actor_email=actor_email,
            entity_type="consultation",
            entity_id=consultation.id,
            metadata={"doctor_id": doctor_id, "mode": mode.value},
            commit=False,
        )
        await db.commit()
        await db.refresh(consultation)

        logger.info("Consultation %s booked: patient=%s doctor=%s mode=%s",
                    consultation.id, patient_id, doctor_id, mode.value)
        if dispatcher is not None:
            dispatcher.consultation_booked(consultation.id, patient_id, doctor_id, consultation.scheduled_time)
        return consultation

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: int, role: str) -> List[Dict[str, Any]]:
        patient = aliased(User)
        doctor = aliased(User)
        stmt = (
            select(Consultation, patient.full_name, doctor.full_name)
            .join(patient, patient.id == Consultation.patient_id)
            .join(doctor, doctor.id == Consultation.doctor_id)
            .order_by(desc(Consultation.scheduled_time), desc(Consultation.id))
        )
        if role == UserRole.PATIENT.value:
            stmt = stmt.where(Consultation.patient_id == user_id)
        elif role == UserRole.DOCTOR.value:
            stmt = stmt.where(Consultation.doctor_id == user_id)
        else:
            raise NotAuthorizedError("Only patients and doctors have consultations")

        rows = (await db.execute(stmt)).all()
        return [
            {
                "id": c.id,
                "patient_id": c.patient_id,
                "patient_name": patient_name,
                "doctor_id": c.doctor_id,
                "doctor_name": doctor_name,
                "scheduled_time": c.scheduled_time,
                "mode": c.mode.value,
                "status": c.status.value,
                "notes": c.notes,
            }
            for c, patient_name, doctor_name in rows
        ]

    @staticmethod
    async def _load(db: AsyncSession, consultation_id: int) -> Consultation:
        stmt = (
            select(Consultation)
            .where(Consultation.id == consultation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        consultation = (await db.execute(stmt)).scalar_one_or_none()
        if consultation is None:
            raise ResourceNotFoundError("Consultation", consultation_id)
        return consultation

    @staticmethod
    def _require_party(consultation: Consultation, user_id: int) -> None:
        if user_id not in (consultation.patient_id, consultation.doctor_id):
            raise NotAuthorizedError("Not a participant in this consultation")

    @staticmethod
    def _transition(consultation: Consultation, target: ConsultationStatus) -> ConsultationStatus:
        current = consultation.status
        if target not in CONSULTATION_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError("consultation", current.value, target.value)
        consultation.status = target
        return current

    @staticmethod
    async def _end_active_calls(
        db: AsyncSession,
        consultation_id: int,
        modality: Optional[CallModality] = None,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """Complete every active call (optionally of one modality) with an explicit UPDATE."""
        now = now or utc_now()
        query = select(Call).where(
            Call.consultation_id == consultation_id,
            Call.status == CallStatus.ACTIVE,
        ).with_for_update()
        if modality is not None:
            query = query.where(Call.modality == modality)
        active = (await db.execute(query)).scalars().all()

        ended = []
        for call in active:
            await db.execute(
                update(Call)
                .where(Call.id == call.id, Call.status == CallStatus.ACTIVE)
                .values(
                    status=CallStatus.COMPLETED,
                    ended_at=now,
                    duration_seconds=elapsed_seconds(call.started_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            ended.append(call.id)
            logger.warning("Force-ended active %s call %s on consultation %s",
                           call.modality.value, call.id, consultation_id)
        return ended

    @staticmethod
    async def update_status(
        db: AsyncSession,
        consultation_id: int,
        actor_id: int,
        status: Any,
        dispatcher=None,
        actor_email: Optional[str] = None,
    ) -> Consultation:
        target = parse_status(status)
        consultation = await ConsultationService._load(db, consultation_id)
        ConsultationService._require_party(consultation, actor_id)

        if target == ConsultationStatus.ACCEPTED and actor_id != consultation.doctor_id:
            raise NotAuthorizedError("Only the assigned doctor can accept a consultation")

        previous = ConsultationService._transition(consultation, target)

        ended = []
        if target in (ConsultationStatus.CANCELLED, ConsultationStatus.COMPLETED):
            # No call outlives the consultation
            ended = await ConsultationService._end_active_calls(db, consultation_id)

        await log_event(
            db,
            AuditAction.CONSULTATION_STATUS_CHANGED,
            actor_id=actor_id,
            actor_email=actor_email,
            entity_type="consultation",
            entity_id=consultation_id,
            metadata={"from": previous.value, "to": target.value, "force_ended_calls": ended},
            commit=False,
        )
        await db.commit()
        await db.refresh(consultation)

        logger.info("Consultation %s: %s -> %s by user %s", consultation_id, previous.value, target.value, actor_id)
        if dispatcher is not None:
            other = consultation.patient_id if actor_id == consultation.doctor_id else consultation.doctor_id
            dispatcher.consultation_updated(consultation_id, other, target.value)
        return consultation

    @staticmethod
    async def accept(db: AsyncSession, consultation_id: int, actor_id: int, **kwargs) -> Consultation:
        return await ConsultationService.update_status(
            db, consultation_id, actor_id, ConsultationStatus.ACCEPTED, **kwargs
        )

    @staticmethod
    async def start_call(
        db: AsyncSession,
        consultation_id: int,
        initiator_id: int,
        modality: CallModality,
        actor_email: Optional[str] = None,
    ) -> CallStartResult:
        """
        Start an audio/video call.

        Any active call of the same modality is completed first, in the same
        transaction, before the new one is inserted.
        """
        modality = CallModality(modality)
        consultation = await ConsultationService._load(db, consultation_id)
        ConsultationService._require_party(consultation, initiator_id)

        if consultation.mode.value != modality.value:
            raise ModeMismatchError(consultation.mode.value, modality.value)
        if consultation.status not in CALLABLE_STATUSES:
            raise InvalidTransitionError("consultation", consultation.status.value, ConsultationStatus.IN_PROGRESS.value)

        now = utc_now()
        try:
            force_ended = await ConsultationService._end_active_calls(db, consultation_id, modality, now)

            call = Call(
                consultation_id=consultation_id,
                initiator_id=initiator_id,
                modality=modality,
                status=CallStatus.ACTIVE,
                started_at=now,
            )
            db.add(call)
            await db.flush()

            if consultation.status == ConsultationStatus.ACCEPTED:
                ConsultationService._transition(consultation, ConsultationStatus.IN_PROGRESS)

            await log_event(
                db,
                AuditAction.CALL_STARTED,
                actor_id=initiator_id,
                actor_email=actor_email,
                entity_type="call",
                entity_id=call.id,
                metadata={"consultation_id": consultation_id, "modality": modality.value,
                          "force_ended_calls": force_ended},
                commit=False,
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(
                f"Another {modality.value} call was started concurrently",
                details={"consultation_id": consultation_id},
            )

        logger.info("Started %s call %s on consultation %s", modality.value, call.id, consultation_id)
        return CallStartResult(
            call_id=call.id,
            consultation_id=consultation_id,
            modality=modality,
            started_at=now,
            consultation_status=consultation.status,
            force_ended_call_ids=force_ended,
        )

    @staticmethod
    async def end_call(
        db: AsyncSession,
        consultation_id: int,
        call_id: int,
        modality: CallModality,
        actor_id: int,
        duration_seconds: Optional[int] = None,
        actor_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CallEndResult:
        """
        Complete an active call.

        A client-supplied duration wins; otherwise it is ended_at - started_at.
        The consultation moves to completed.
        """
        modality = CallModality(modality)
        if duration_seconds is not None and (isinstance(duration_seconds, bool) or duration_seconds < 0):
            raise InvalidInputError("duration_seconds must be a non-negative integer")

        call = (await db.execute(
            select(Call).where(Call.id == call_id).with_for_update().execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if call is None or call.consultation_id != consultation_id or call.modality != modality:
            raise ResourceNotFoundError("Call", call_id)

        consultation = await ConsultationService._load(db, consultation_id)
        ConsultationService._require_party(consultation, actor_id)

        if call.status != CallStatus.ACTIVE:
            raise InvalidTransitionError("call", call.status.value, CallStatus.COMPLETED.value)

        ended_at = now or utc_now()
        duration = int(duration_seconds) if duration_seconds is not None else elapsed_seconds(call.started_at, ended_at)

        call.status = CallStatus.COMPLETED
        call.ended_at = ended_at
        call.duration_seconds = duration

        if consultation.status == ConsultationStatus.IN_PROGRESS:
            ConsultationService._transition(consultation, ConsultationStatus.COMPLETED)

        await log_event(
            db,
            AuditAction.CALL_ENDED,
            actor_id=actor_id,
            actor_email=actor_email,
            entity_type="call",
            entity_id=call_id,
            metadata={"consultation_id": consultation_id, "duration_seconds": duration},
            commit=False,
        )
        await db.commit()

        logger.info("Ended %s call %s after %ss", modality.value, call_id, duration)
        return CallEndResult(
            call_id=call_id,
            consultation_id=consultation_id,
            ended_at=ended_at,
            duration_seconds=duration,
            consultation_status=consultation.status,
        )

    @staticmethod
    async def list_calls(
        db: AsyncSession,
        consultation_id: int,
        modality: CallModality,
        actor_id: int,
    ) -> List[Dict[str, Any]]:
        consultation = await db.get(Consultation, consultation_id)
        if consultation is None:
            raise ResourceNotFoundError("Consultation", consultation_id)
        ConsultationService._require_party(consultation, actor_id)

        rows = (await db.execute(
            select(Call, User.full_name)
            .join(User, User.id == Call.initiator_id)
            .where(Call.consultation_id == consultation_id, Call.modality == CallModality(modality))
            .order_by(desc(Call.started_at), desc(Call.id))
        )).all()
        return [
            {
                "id": call.id,
                "consultation_id": call.consultation_id,
                "initiator_id": call.initiator_id,
                "initiator_name": initiator_name,
                "modality": call.modality.value,
                "status": call.status.value,
                "started_at": call.started_at,
                "ended_at": call.ended_at,
                "duration_seconds": call.duration_seconds,
            }
            for call, initiator_name in rows
        ]
