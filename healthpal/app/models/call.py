"""
Call database model.

Audio or video session nested inside a consultation.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, Index, text
from healthpal.app.db.session import Base
from healthpal.app.models.enums import enum_values
from healthpal.app.models.consultation_enums import CallModality, CallStatus


class Call(Base):
    """
    Call model.

    At most one ACTIVE call per (consultation, modality), enforced by a partial
    unique index. duration_seconds is set when the call ends.
    """
    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    consultation_id = Column(Integer, ForeignKey('consultations.id'), nullable=False, index=True)
    initiator_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    modality = Column(Enum(CallModality, values_callable=enum_values), nullable=False)
    status = Column(Enum(CallStatus, values_callable=enum_values), default=CallStatus.ACTIVE, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    __table_args__ = (
        Index(
            'ix_calls_one_active',
            'consultation_id', 'modality',
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def __repr__(self):
        return f"<Call(id={self.id}, consultation={self.consultation_id}, modality='{self.modality.value}', status='{self.status.value}')>"
