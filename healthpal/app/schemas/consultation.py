"""
Consultation and Call Schemas.
"""

from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import Optional, List


class ConsultationCreate(BaseModel):
    doctor_id: int
    consultation_date: datetime
    mode: str
    notes: Optional[str] = None


class ConsultationCreated(BaseModel):
    consultation_id: int = Field(..., serialization_alias="consultationId")
    status: str


class ConsultationStatusUpdate(BaseModel):
    status: str


class ConsultationResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: Optional[str] = None
    doctor_id: int
    doctor_name: Optional[str] = None
    scheduled_time: datetime
    mode: str
    status: str
    notes: str = ""


class CallEndRequest(BaseModel):
    call_id: int = Field(..., validation_alias=AliasChoices("call_id", "callId"))
    duration_seconds: Optional[int] = Field(default=None, ge=0)


class CallStartResponse(BaseModel):
    call_id: int = Field(..., serialization_alias="callId")
    modality: str
    consultation_status: str
    started_at: datetime
    force_ended_call_ids: List[int] = []


class CallEndResponse(BaseModel):
    call_id: int
    duration_seconds: int
    ended_at: datetime
    consultation_status: str


class CallResponse(BaseModel):
    id: int
    consultation_id: int
    initiator_id: int
    initiator_name: Optional[str] = None
    modality: str
    status: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
