"""
Sponsorship API Endpoints.

Campaign creation, browsing, closing and the staged (gateway) payment flow.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from healthpal.app.db.session import get_db
from healthpal.app.models.enums import UserRole
from healthpal.app.core.guards import require_role, is_admin
from healthpal.app.core.dependencies import (
    get_current_user,
    get_dispatcher,
    get_payment_gateway,
    get_settings,
    client_ip,
)
from healthpal.app.domain.ledger.ledger_service import LedgerService, DonationResult
from healthpal.app.schemas.sponsorship import (
    SponsorshipCreate,
    SponsorshipCreated,
    SponsorshipResponse,
    SponsorshipDetailResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
)

router = APIRouter(prefix="/sponsorships", tags=["Sponsorships"])


@router.post("", response_model=SponsorshipCreated, status_code=status.HTTP_201_CREATED)
async def create_sponsorship(
    req: SponsorshipCreate,
    current_user: dict = Depends(require_role([UserRole.PATIENT])),
    db: AsyncSession = Depends(get_db)
):
    """Open a funding campaign for the calling patient."""
    sponsorship = await LedgerService.create_sponsorship(
        db,
        beneficiary_id=current_user["user_id"],
        treatment_type=req.treatment_type,
        goal_amount=req.goal_amount,
        description=req.description,
        actor_email=current_user.get("sub"),
    )
    return SponsorshipCreated(sponsorship_id=sponsorship.id, status=sponsorship.status.value)


@router.get("", response_model=List[SponsorshipResponse])
async def list_sponsorships(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Open campaigns, newest first."""
    return await LedgerService.list_open_sponsorships(db)


@router.get("/{sponsorship_id}", response_model=SponsorshipDetailResponse)
async def get_sponsorship(
    sponsorship_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    detail = await LedgerService.get_sponsorship_detail(db, sponsorship_id)
    return SponsorshipDetailResponse(
        sponsorship=detail.sponsorship,
        donations=detail.donations,
        stats=detail.stats,
    )


@router.patch("/{sponsorship_id}/close", response_model=SponsorshipResponse)
async def close_sponsorship(
    sponsorship_id: int,
    current_user: dict = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    await LedgerService.close_sponsorship(
        db,
        sponsorship_id,
        actor_id=current_user["user_id"],
        actor_is_admin=is_admin(current_user),
        actor_email=current_user.get("sub"),
    )
    detail = await LedgerService.get_sponsorship_detail(db, sponsorship_id)
    return detail.sponsorship


@router.post("/{sponsorship_id}/payment/initiate", response_model=PaymentInitiateResponse)
async def initiate_payment(
    sponsorship_id: int,
    req: PaymentInitiateRequest,
    current_user: dict = Depends(require_role([UserRole.DONOR])),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    settings=Depends(get_settings)
):
    """Create a gateway payment intent; the ledger is untouched until confirm."""
    return await LedgerService.initiate_payment(
        db,
        gateway,
        sponsorship_id,
        donor_id=current_user["user_id"],
        amount=req.amount,
        currency=settings.currency,
    )


def _confirm_response(result: DonationResult) -> PaymentConfirmResponse:
    return PaymentConfirmResponse(
        transaction_id=result.transaction_id,
        receipt_url=result.receipt_url,
        is_funded=result.new_total >= result.goal_amount,
        duplicate=result.duplicate,
        amount=result.amount,
        new_total=result.new_total,
    )


@router.post("/{sponsorship_id}/payment/confirm", response_model=PaymentConfirmResponse)
async def confirm_payment(
    sponsorship_id: int,
    req: PaymentConfirmRequest,
    request: Request,
    current_user: dict = Depends(require_role([UserRole.DONOR])),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    dispatcher=Depends(get_dispatcher)
):
    """
    Book a gateway-confirmed donation.

    Idempotent on payment_intent_id: repeating the call returns the original
    transaction with duplicate=true.
    """
    result = await LedgerService.confirm_payment(
        db,
        gateway,
        req.payment_intent_id,
        sponsorship_id,
        donor_id=current_user["user_id"],
        amount=req.amount,
        dispatcher=dispatcher,
        actor_email=current_user.get("sub"),
        ip_address=client_ip(request),
    )
    return _confirm_response(result)


@router.post("/{sponsorship_id}/donate", response_model=PaymentConfirmResponse, include_in_schema=False)
async def donate_legacy(
    sponsorship_id: int,
    req: PaymentConfirmRequest,
    request: Request,
    current_user: dict = Depends(require_role([UserRole.DONOR])),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    dispatcher=Depends(get_dispatcher)
):
    """Older clients post here; same contract as /payment/confirm."""
    return await confirm_payment(
        sponsorship_id, req, request,
        current_user=current_user, db=db, gateway=gateway, dispatcher=dispatcher,
    )
