"""
In-app notifications.

Every email or SMS the platform sends for a donation or consultation also
leaves a row here for the recipient, readable through /v1/notifications.
"""

import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from healthpal.app.db.session import Base
from healthpal.app.models.enums import enum_values


class NotificationType(str, enum.Enum):
    INFO = "info"
    DONATION_RECEIVED = "donation_received"
    SPONSORSHIP_FUNDED = "sponsorship_funded"
    CONSULTATION_UPDATE = "consultation_update"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(Enum(NotificationType, values_callable=enum_values), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # sponsorship_id / transaction_id / consultation_id the notice refers to
    metadata_payload = Column(JSON, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type='{self.type.value}')>"
