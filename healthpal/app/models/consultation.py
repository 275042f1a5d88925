"""
Consultation database model.
"""

from sqlalchemy import Column, Integer, Text, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from healthpal.app.db.session import Base
from healthpal.app.models.enums import enum_values
from healthpal.app.models.consultation_enums import ConsultationMode, ConsultationStatus


class Consultation(Base):
    """
    Consultation model.

    A scheduled patient-doctor interaction. Mode is immutable after booking;
    status follows CONSULTATION_TRANSITIONS.
    """
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    patient_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    scheduled_time = Column(DateTime(timezone=True), nullable=False)
    mode = Column(Enum(ConsultationMode, values_callable=enum_values), nullable=False)
    status = Column(
        Enum(ConsultationStatus, values_callable=enum_values),
        default=ConsultationStatus.PENDING,
        nullable=False,
        index=True
    )
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Consultation(id={self.id}, mode='{self.mode.value}', status='{self.status.value}')>"
