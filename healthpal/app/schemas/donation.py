"""
Donation Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Union


class DonationCreate(BaseModel):
    sponsorship_id: int
    amount: Union[float, str, None] = None
    payment_method: Optional[str] = None


class DonationResponse(BaseModel):
    transaction_id: int = Field(..., serialization_alias="transactionId")
    amount: float
    status: str
    is_funded: bool = Field(..., serialization_alias="isFunded")
    sponsorship_funded_amount: float
    sponsorship_goal: float


class DonationHistoryItem(BaseModel):
    id: int
    sponsorship_id: int
    amount: float
    payment_method: str
    status: str
    created_at: Optional[datetime] = None
    treatment_type: str
    patient_name: Optional[str] = None
    goal_amount: float
    donated_amount: float


class DonationHistoryResponse(BaseModel):
    donations: List[DonationHistoryItem]
    total_donations: int
    total_amount_donated: float


class PaymentMethodStats(BaseModel):
    payment_method: str
    donation_count: int
    total_amount: float
    average_amount: float


class WebhookAck(BaseModel):
    received: bool
    handled: Optional[str] = None
    updated: int = 0
