"""
Consultation and call enumerations.
"""

import enum


class ConsultationMode(str, enum.Enum):
    """Fixed at booking time."""
    CHAT = "chat"
    AUDIO = "audio"
    VIDEO = "video"


class ConsultationStatus(str, enum.Enum):
    """Consultation status enumeration."""
    PENDING = "pending"  # Booked, waiting for the doctor
    ACCEPTED = "accepted"  # Doctor accepted
    IN_PROGRESS = "in_progress"  # A call is running
    COMPLETED = "completed"  # Call ended
    CANCELLED = "cancelled"


class CallModality(str, enum.Enum):
    AUDIO = "audio"
    VIDEO = "video"


class CallStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


CONSULTATION_TRANSITIONS = {
    ConsultationStatus.PENDING: {ConsultationStatus.ACCEPTED, ConsultationStatus.CANCELLED},
    ConsultationStatus.ACCEPTED: {ConsultationStatus.IN_PROGRESS, ConsultationStatus.CANCELLED},
    ConsultationStatus.IN_PROGRESS: {ConsultationStatus.COMPLETED},
    ConsultationStatus.COMPLETED: set(),
    ConsultationStatus.CANCELLED: set(),
}

# Calls may only exist while the consultation is in one of these
CALLABLE_STATUSES = {ConsultationStatus.ACCEPTED, ConsultationStatus.IN_PROGRESS}
