"""
Consultation API Endpoints.

Booking, listing and status changes. Calls live in calls.py.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from healthpal.app.db.session import get_db
from healthpal.app.models.enums import UserRole
from healthpal.app.core.guards import require_role
from healthpal.app.core.dependencies import get_current_user, get_dispatcher
from healthpal.app.domain.consultations.consultation_service import ConsultationService
from healthpal.app.schemas.consultation import (
    ConsultationCreate,
    ConsultationCreated,
    ConsultationStatusUpdate,
    ConsultationResponse,
)

router = APIRouter(prefix="/consultations", tags=["Consultations"])


@router.post("", response_model=ConsultationCreated, status_code=status.HTTP_201_CREATED)
async def book_consultation(
    req: ConsultationCreate,
    current_user: dict = Depends(require_role([UserRole.PATIENT])),
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher)
):
    consultation = await ConsultationService.book(
        db,
        patient_id=current_user["user_id"],
        doctor_id=req.doctor_id,
        scheduled_time=req.consultation_date,
        mode=req.mode,
        notes=req.notes,
        dispatcher=dispatcher,
        actor_email=current_user.get("sub"),
    )
    return ConsultationCreated(consultation_id=consultation.id, status=consultation.status.value)


@router.get("", response_model=List[ConsultationResponse])
async def list_consultations(
    current_user: dict = Depends(require_role([UserRole.PATIENT, UserRole.DOCTOR])),
    db: AsyncSession = Depends(get_db)
):
    """Patients see their bookings, doctors the consultations assigned to them."""
    return await ConsultationService.list_for_user(db, current_user["user_id"], current_user["role"])


@router.patch("/{consultation_id}/status")
async def update_consultation_status(
    consultation_id: int,
    req: ConsultationStatusUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher)
):
    consultation = await ConsultationService.update_status(
        db,
        consultation_id,
        actor_id=current_user["user_id"],
        status=req.status,
        dispatcher=dispatcher,
        actor_email=current_user.get("sub"),
    )
    return {
        "status": "success",
        "consultation_id": consultation.id,
        "consultation_status": consultation.status.value,
    }
