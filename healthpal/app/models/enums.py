"""
User roles enumeration.

Defines the role types for the HealthPal platform.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        PATIENT: Books consultations and opens sponsorship campaigns
        DOCTOR: Accepts and runs consultations
        DONOR: Funds sponsorship campaigns
        NGO: Partner organisation account
        ADMIN: Platform operator (cannot self-register)
    """
    PATIENT = "patient"
    DOCTOR = "doctor"
    DONOR = "donor"
    NGO = "ngo"
    ADMIN = "admin"


def enum_values(enum_cls):
    """Persist enum values (not member names) so stored strings match the API."""
    return [member.value for member in enum_cls]
