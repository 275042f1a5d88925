"""
Dead letter table for notification deliveries.

A row is written when an email or SMS for an already committed donation or
consultation change could not be delivered. `task_name` names the delivery
(for example `donation_confirmation_sms`) and `payload` holds what is needed
to send it again by hand.
"""

import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from healthpal.app.db.session import Base
from healthpal.app.models.enums import enum_values


class DLQStatus(str, enum.Enum):
    FAILED = "failed"


class DeadLetterQueue(Base):
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_name = Column(String(100), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(Enum(DLQStatus, values_callable=enum_values), default=DLQStatus.FAILED, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DeadLetter(id={self.id}, task='{self.task_name}')>"
