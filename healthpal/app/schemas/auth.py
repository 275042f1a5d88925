"""
Request and response bodies for /v1/auth.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional
from healthpal.app.models.enums import UserRole


class UserRegister(BaseModel):
    """Any role except admin may sign up; the endpoint rejects admin."""
    full_name: str = Field(..., min_length=2, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.PATIENT
    # Donation receipts go out by SMS when a phone number is on file
    phone: Optional[str] = Field(default=None, max_length=30)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    full_name: str
    email: str
    role: UserRole


class UserResponse(BaseModel):
    id: int
    full_name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
