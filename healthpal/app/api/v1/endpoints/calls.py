"""
Audio / Video Call Endpoints.

Both modalities share one handler set; a router is built per modality so the
paths read /consultations/{id}/video-calls and /consultations/{id}/audio-calls.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from healthpal.app.db.session import get_db
from healthpal.app.core.dependencies import get_current_user
from healthpal.app.domain.consultations.consultation_service import ConsultationService
from healthpal.app.models.consultation_enums import CallModality
from healthpal.app.schemas.consultation import (
    CallEndRequest,
    CallEndResponse,
    CallResponse,
    CallStartResponse,
)


def build_call_router(modality: CallModality) -> APIRouter:
    router = APIRouter(prefix="/consultations", tags=[f"{modality.value.title()} Calls"])
    path = f"/{{consultation_id}}/{modality.value}-calls"

    @router.post(path, response_model=CallStartResponse, status_code=status.HTTP_201_CREATED)
    async def start_call(
        consultation_id: int,
        current_user: dict = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ):
        result = await ConsultationService.start_call(
            db,
            consultation_id,
            initiator_id=current_user["user_id"],
            modality=modality,
            actor_email=current_user.get("sub"),
        )
        return CallStartResponse(
            call_id=result.call_id,
            modality=result.modality.value,
            consultation_status=result.consultation_status.value,
            started_at=result.started_at,
            force_ended_call_ids=result.force_ended_call_ids,
        )

    @router.patch(f"{path}/end", response_model=CallEndResponse)
    async def end_call(
        consultation_id: int,
        req: CallEndRequest,
        current_user: dict = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ):
        result = await ConsultationService.end_call(
            db,
            consultation_id,
            req.call_id,
            modality,
            actor_id=current_user["user_id"],
            duration_seconds=req.duration_seconds,
            actor_email=current_user.get("sub"),
        )
        return CallEndResponse(
            call_id=result.call_id,
            duration_seconds=result.duration_seconds,
            ended_at=result.ended_at,
            consultation_status=result.consultation_status.value,
        )

    @router.get(path, response_model=List[CallResponse])
    async def call_history(
        consultation_id: int,
        current_user: dict = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
    ):
        return await ConsultationService.list_calls(db, consultation_id, modality, current_user["user_id"])

    return router


video_router = build_call_router(CallModality.VIDEO)
audio_router = build_call_router(CallModality.AUDIO)
