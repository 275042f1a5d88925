"""
Donation API Endpoints.

Direct (settled) donations, donor history and reporting.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from healthpal.app.db.session import get_db
from healthpal.app.models.enums import UserRole
from healthpal.app.core.guards import require_role
from healthpal.app.core.dependencies import get_current_user, get_dispatcher, get_settings, client_ip
from healthpal.app.core.exceptions import ResourceNotFoundError
from healthpal.app.domain.ledger.ledger_service import LedgerService
from healthpal.app.models.sponsorship import Sponsorship
from healthpal.app.schemas.donation import (
    DonationCreate,
    DonationResponse,
    DonationHistoryResponse,
    PaymentMethodStats,
)
from healthpal.app.schemas.sponsorship import SponsorshipDonation

router = APIRouter(prefix="/donations", tags=["Donations"])


@router.post("", response_model=DonationResponse, status_code=status.HTTP_201_CREATED)
async def create_donation(
    req: DonationCreate,
    request: Request,
    current_user: dict = Depends(require_role([UserRole.DONOR])),
    db: AsyncSession = Depends(get_db),
    settings=Depends(get_settings),
    dispatcher=Depends(get_dispatcher)
):
    """
    Record a donation.

    400 on bad amount / payment method or when the campaign is already funded,
    404 when the sponsorship does not exist, 409 when it is closed.
    """
    result = await LedgerService.record_donation(
        db,
        req.sponsorship_id,
        donor_id=current_user["user_id"],
        amount=req.amount,
        payment_method=req.payment_method,
        allowed_methods=settings.allowed_payment_methods,
        dispatcher=dispatcher,
        actor_email=current_user.get("sub"),
        ip_address=client_ip(request),
    )
    return DonationResponse(
        transaction_id=result.transaction_id,
        amount=result.amount,
        status=result.status.value,
        is_funded=result.is_now_funded,
        sponsorship_funded_amount=result.new_total,
        sponsorship_goal=result.goal_amount,
    )


@router.get("/history", response_model=DonationHistoryResponse)
async def donation_history(
    current_user: dict = Depends(require_role([UserRole.DONOR])),
    db: AsyncSession = Depends(get_db)
):
    history = await LedgerService.get_donation_history(db, current_user["user_id"])
    return DonationHistoryResponse(
        donations=history.transactions,
        total_donations=history.total_count,
        total_amount_donated=history.total_amount,
    )


@router.get("/sponsorship/{sponsorship_id}", response_model=List[SponsorshipDonation])
async def sponsorship_donations(
    sponsorship_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    if await db.get(Sponsorship, sponsorship_id) is None:
        raise ResourceNotFoundError("Sponsorship", sponsorship_id)
    return await LedgerService.get_sponsorship_donations(db, sponsorship_id)


@router.get("/stats", response_model=List[PaymentMethodStats])
async def donation_stats(
    current_user: dict = Depends(require_role([UserRole.ADMIN, UserRole.NGO])),
    db: AsyncSession = Depends(get_db)
):
    """Completed donations grouped by payment method."""
    return await LedgerService.get_donation_stats(db)
