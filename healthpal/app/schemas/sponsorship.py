"""
Sponsorship Schemas.

Money leaves the API as JSON numbers; amounts arrive as numbers or numeric
strings and are validated by the ledger so bad values answer 400.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Union


class SponsorshipCreate(BaseModel):
    treatment_type: str = Field(..., max_length=150)
    goal_amount: Union[float, str, None] = None
    description: str = ""


class SponsorshipCreated(BaseModel):
    sponsorship_id: int = Field(..., serialization_alias="sponsorshipId")
    status: str


class SponsorshipResponse(BaseModel):
    id: int
    beneficiary_id: int
    patient_name: Optional[str] = None
    treatment_type: str
    description: str
    goal_amount: float
    donated_amount: float
    status: str
    created_at: Optional[datetime] = None


class SponsorshipDonation(BaseModel):
    id: int
    donor_id: int
    donor_name: Optional[str] = None
    amount: float
    payment_method: str
    created_at: Optional[datetime] = None


class SponsorshipStats(BaseModel):
    donor_count: int
    total_raised: float
    average_donation: float
    max_donation: float
    min_donation: float


class SponsorshipDetailResponse(BaseModel):
    sponsorship: SponsorshipResponse
    donations: List[SponsorshipDonation]
    stats: SponsorshipStats


class PaymentInitiateRequest(BaseModel):
    amount: Union[float, str, None] = None


class PaymentInitiateResponse(BaseModel):
    client_secret: Optional[str]
    payment_intent_id: str
    amount: float


class PaymentConfirmRequest(BaseModel):
    payment_intent_id: str = ""
    amount: Union[float, str, None] = None


class PaymentConfirmResponse(BaseModel):
    transaction_id: int
    receipt_url: Optional[str] = None
    is_funded: bool
    duplicate: bool
    amount: float
    new_total: float
