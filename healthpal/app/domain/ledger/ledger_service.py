"""
Ledger Service (Domain Logic).

Sponsorship campaigns and donation bookkeeping. Every operation that moves
money is a single transaction:

    1. Lock-read the sponsorship (SELECT ... FOR UPDATE, fresh from the db)
    2. Guarded atomic increment (UPDATE ... SET donated_amount = donated_amount + :amt
       WHERE status != 'closed' [AND donated_amount < goal_amount])
    3. Insert the append-only Transaction row
    4. Flip OPEN -> FUNDED once the new total reaches the goal
    5. Audit row, then one commit

donated_amount therefore always equals the sum of completed transactions.
Notifications are handed to the dispatcher only after the commit.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func, distinct, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from healthpal.app.core.exceptions import (
    AlreadyFundedError,
    ConflictError,
    DuplicateEntityError,
    InvalidAmountError,
    InvalidInputError,
    InvalidPaymentMethodError,
    InvalidTransitionError,
    NotAuthorizedError,
    ResourceNotFoundError,
    SponsorshipClosedError,
    ValidationFailedError,
)
from healthpal.app.models.ledger_enums import (
    SponsorshipStatus,
    TransactionStatus,
    PaymentMethod,
    SPONSORSHIP_TRANSITIONS,
    TRANSACTION_TRANSITIONS,
    can_transition,
)
from healthpal.app.models.sponsorship import Sponsorship
from healthpal.app.models.transaction import Transaction
from healthpal.app.models.user import User
from healthpal.app.services.audit import AuditAction, log_event
from healthpal.app.services.notification_service import DonationNotice

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")
# Webhook events that change balances or transaction status
LEDGER_WEBHOOK_EVENTS = frozenset({"payment_intent.payment_failed", "charge.refunded"})


def to_money(value: Any) -> Decimal:
    """Parse a strictly positive amount with at most two decimal places."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError()
    try:
        amount = Decimal(str(value))
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmountError()
        if amount > MAX_AMOUNT:
            raise InvalidAmountError(f"Amount must not exceed {MAX_AMOUNT}")
        cents = amount.quantize(CENT)
    except (InvalidOperation, ValueError):
        raise InvalidAmountError()
    if amount != cents:
        raise InvalidAmountError("Amount must have at most two decimal places")
    return cents


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


@dataclass
class DonationResult:
    transaction_id: int
    sponsorship_id: int
    amount: Decimal
    status: TransactionStatus
    new_total: Decimal
    goal_amount: Decimal
    is_now_funded: bool
    receipt_url: Optional[str] = None
    duplicate: bool = False
    notice: Optional[DonationNotice] = None


@dataclass
class DonationHistory:
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    total_amount: Decimal = ZERO


@dataclass
class SponsorshipDetail:
    sponsorship: Dict[str, Any]
    donations: List[Dict[str, Any]]
    stats: Dict[str, Any]


@dataclass
class RefundResult:
    transaction_id: int
    sponsorship_id: int
    amount: Decimal
    new_total: Decimal
    reopened: bool
    already_refunded: bool = False


class LedgerService:

    @staticmethod
    def normalize_payment_method(payment_method: Any, allowed: List[str]) -> str:
        if not isinstance(payment_method, str) or not payment_method.strip():
            raise InvalidPaymentMethodError(allowed)
        method = payment_method.strip().lower()
        if method not in allowed:
            raise InvalidPaymentMethodError(allowed)
        return method

    @staticmethod
    async def create_sponsorship(
        db: AsyncSession,
        beneficiary_id: int,
        treatment_type: str,
        goal_amount: Any,
        description: str,
        actor_email: Optional[str] = None,
    ) -> Sponsorship:
        if not treatment_type or not str(treatment_type).strip():
            raise InvalidInputError("treatment_type is required")
        if not description or not str(description).strip():
            raise InvalidInputError("description is required")
        try:
            goal = to_money(goal_amount)
        except InvalidAmountError:
            raise InvalidInputError("goal_amount must be a positive number")

        sponsorship = Sponsorship(
            beneficiary_id=beneficiary_id,
            treatment_type=treatment_type.strip(),
            description=description.strip(),
            goal_amount=goal,
            donated_amount=ZERO,
            status=SponsorshipStatus.OPEN,
        )
        db.add(sponsorship)
        await db.flush()

        await log_event(
            db,
            AuditAction.SPONSORSHIP_CREATED,
            actor_id=beneficiary_id,
            actor_email=actor_email,
            entity_type="sponsorship",
            entity_id=sponsorship.id,
            metadata={"goal_amount": str(goal), "treatment_type": sponsorship.treatment_type},
            commit=False,
        )
        await db.commit()
        await db.refresh(sponsorship)

        logger.info("Sponsorship %s created for beneficiary %s (goal %s)", sponsorship.id, beneficiary_id, goal)
        return sponsorship

    @staticmethod
    async def list_open_sponsorships(db: AsyncSession) -> List[Dict[str, Any]]:
        stmt = (
            select(Sponsorship, User.full_name)
            .join(User, User.id == Sponsorship.beneficiary_id)
            .where(Sponsorship.status == SponsorshipStatus.OPEN)
            .order_by(desc(Sponsorship.created_at), desc(Sponsorship.id))
        )
        result = await db.execute(stmt)
        return [_sponsorship_row(s, patient_name) for s, patient_name in result.all()]

    @staticmethod
    async def _lock_sponsorship(db: AsyncSession, sponsorship_id: int) -> Sponsorship:
        stmt = (
            select(Sponsorship)
            .where(Sponsorship.id == sponsorship_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sponsorship = (await db.execute(stmt)).scalar_one_or_none()
        if sponsorship is None:
            raise ResourceNotFoundError("Sponsorship", sponsorship_id)
        return sponsorship

    @staticmethod
    async def _book_donation(
        db: AsyncSession,
        sponsorship_id: int,
        donor_id: int,
        amount: Decimal,
        payment_method: str,
        enforce_goal: bool,
        external_payment_ref: Optional[str] = None,
        external_charge_ref: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> DonationResult:
        """
        Steps 1-4 of the module docstring. Does not commit.

        Raises before any write when the sponsorship is missing, closed or
        (with enforce_goal) already at its goal.
        """
        sponsorship = await LedgerService._lock_sponsorship(db, sponsorship_id)

        if sponsorship.status == SponsorshipStatus.CLOSED:
            raise SponsorshipClosedError(sponsorship_id)
        if enforce_goal and (
            sponsorship.status == SponsorshipStatus.FUNDED
            or sponsorship.donated_amount >= sponsorship.goal_amount
        ):
            raise AlreadyFundedError(sponsorship_id)

        if _money(sponsorship.donated_amount) + amount > MAX_AMOUNT:
            raise InvalidAmountError("Donation would exceed the largest amount a sponsorship can hold")

        # Guarded compare-and-swap; the WHERE clause re-checks what we just read
        stmt = (
            update(Sponsorship)
            .where(
                Sponsorship.id == sponsorship_id,
                Sponsorship.status != SponsorshipStatus.CLOSED,
            )
            .values(donated_amount=Sponsorship.donated_amount + amount)
            .execution_options(synchronize_session=False)
        )
        if enforce_goal:
            stmt = stmt.where(
                Sponsorship.status == SponsorshipStatus.OPEN,
                Sponsorship.donated_amount < Sponsorship.goal_amount,
            )
        result = await db.execute(stmt)
        if result.rowcount != 1:
            current = await LedgerService._lock_sponsorship(db, sponsorship_id)
            if current.status == SponsorshipStatus.CLOSED:
                raise SponsorshipClosedError(sponsorship_id)
            raise AlreadyFundedError(sponsorship_id)

        transaction = Transaction(
            sponsorship_id=sponsorship_id,
            donor_id=donor_id,
            amount=amount,
            payment_method=payment_method,
            status=TransactionStatus.COMPLETED,
            external_payment_ref=external_payment_ref,
            external_charge_ref=external_charge_ref,
            receipt_url=receipt_url,
        )
        db.add(transaction)
        await db.flush()

        totals = await db.execute(
            select(Sponsorship.donated_amount, Sponsorship.goal_amount, Sponsorship.status)
            .where(Sponsorship.id == sponsorship_id)
        )
        new_total, goal, status = totals.one()
        new_total = _money(new_total)
        goal = _money(goal)

        is_now_funded = False
        if new_total >= goal and status == SponsorshipStatus.OPEN:
            flipped = await db.execute(
                update(Sponsorship)
                .where(Sponsorship.id == sponsorship_id, Sponsorship.status == SponsorshipStatus.OPEN)
                .values(status=SponsorshipStatus.FUNDED)
                .execution_options(synchronize_session=False)
            )
            is_now_funded = flipped.rowcount == 1

        notice = DonationNotice(
            transaction_id=transaction.id,
            sponsorship_id=sponsorship_id,
            donor_id=donor_id,
            beneficiary_id=sponsorship.beneficiary_id,
            amount=amount,
            new_total=new_total,
            treatment_type=sponsorship.treatment_type,
            is_now_funded=is_now_funded,
            receipt_url=receipt_url,
        )
        return DonationResult(
            transaction_id=transaction.id,
            sponsorship_id=sponsorship_id,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            new_total=new_total,
            goal_amount=goal,
            is_now_funded=is_now_funded,
            receipt_url=receipt_url,
            notice=notice,
        )

    @staticmethod
    async def _audit_donation(db: AsyncSession, action: str, result: DonationResult, donor_id: int,
                              actor_email: Optional[str], ip_address: Optional[str]) -> None:
        await log_event(
            db,
            action,
            actor_id=donor_id,
            actor_email=actor_email,
            entity_type="transaction",
            entity_id=result.transaction_id,
            metadata={
                "sponsorship_id": result.sponsorship_id,
                "amount": str(result.amount),
                "new_total": str(result.new_total),
            },
            ip_address=ip_address,
            commit=False,
        )
        if result.is_now_funded:
            await log_event(
                db,
                AuditAction.SPONSORSHIP_FUNDED,
                actor_id=donor_id,
                actor_email=actor_email,
                entity_type="sponsorship",
                entity_id=result.sponsorship_id,
                metadata={"total_raised": str(result.new_total), "goal_amount": str(result.goal_amount)},
                ip_address=ip_address,
                commit=False,
            )

    @staticmethod
    async def record_donation(
        db: AsyncSession,
        sponsorship_id: int,
        donor_id: int,
        amount: Any,
        payment_method: Any,
        allowed_methods: Optional[List[str]] = None,
        dispatcher=None,
        actor_email: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> DonationResult:
        """
        Record a settled donation (no escrow, no two-phase confirm).

        Raises:
            InvalidAmountError, InvalidPaymentMethodError: before touching the db
            ResourceNotFoundError: sponsorship missing
            SponsorshipClosedError: campaign closed
            AlreadyFundedError: campaign already at or above its goal
        """
        allowed = allowed_methods or [m.value for m in PaymentMethod]
        value = to_money(amount)
        method = LedgerService.normalize_payment_method(payment_method, allowed)

        try:
            result = await LedgerService._book_donation(
                db, sponsorship_id, donor_id, value, method, enforce_goal=True
            )
            await LedgerService._audit_donation(
                db, AuditAction.DONATION_RECORDED, result, donor_id, actor_email, ip_address
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Donation %s recorded: sponsorship=%s amount=%s total=%s/%s",
            result.transaction_id, sponsorship_id, value, result.new_total, result.goal_amount,
        )
        if result.is_now_funded:
            logger.info("Sponsorship %s is now fully funded", sponsorship_id)

        if dispatcher is not None:
            dispatcher.donation_recorded(result.notice)
        return result

    @staticmethod
    async def get_donation_history(db: AsyncSession, donor_id: int) -> DonationHistory:
        stmt = (
            select(Transaction, Sponsorship, User.full_name)
            .join(Sponsorship, Sponsorship.id == Transaction.sponsorship_id)
            .join(User, User.id == Sponsorship.beneficiary_id)
            .where(
                Transaction.donor_id == donor_id,
                Transaction.status == TransactionStatus.COMPLETED,
            )
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
        )
        rows = (await db.execute(stmt)).all()

        transactions = []
        for tx, sponsorship, patient_name in rows:
            transactions.append({
                "id": tx.id,
                "sponsorship_id": tx.sponsorship_id,
                "amount": _money(tx.amount),
                "payment_method": tx.payment_method,
                "status": tx.status.value,
                "created_at": tx.created_at,
                "treatment_type": sponsorship.treatment_type,
                "patient_name": patient_name,
                "goal_amount": _money(sponsorship.goal_amount),
                "donated_amount": _money(sponsorship.donated_amount),
            })

        # Summed from the listed rows so the total always matches the list
        total = sum((t["amount"] for t in transactions), ZERO)
        return DonationHistory(transactions=transactions, total_count=len(transactions), total_amount=total)

    @staticmethod
    async def get_sponsorship_donations(db: AsyncSession, sponsorship_id: int) -> List[Dict[str, Any]]:
        stmt = (
            select(Transaction, User.full_name)
            .join(User, User.id == Transaction.donor_id)
            .where(
                Transaction.sponsorship_id == sponsorship_id,
                Transaction.status == TransactionStatus.COMPLETED,
            )
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
        )
        rows = (await db.execute(stmt)).all()
        return [
            {
                "id": tx.id,
                "donor_id": tx.donor_id,
                "donor_name": donor_name,
                "amount": _money(tx.amount),
                "payment_method": tx.payment_method,
                "created_at": tx.created_at,
            }
            for tx, donor_name in rows
        ]

    @staticmethod
    async def get_sponsorship_detail(db: AsyncSession, sponsorship_id: int) -> SponsorshipDetail:
        row = (await db.execute(
            select(Sponsorship, User.full_name)
            .join(User, User.id == Sponsorship.beneficiary_id)
            .where(Sponsorship.id == sponsorship_id)
        )).first()
        if row is None:
            raise ResourceNotFoundError("Sponsorship", sponsorship_id)
        sponsorship, patient_name = row

        donations = await LedgerService.get_sponsorship_donations(db, sponsorship_id)

        agg = (await db.execute(
            select(
                func.count(distinct(Transaction.donor_id)),
                func.sum(Transaction.amount),
                func.avg(Transaction.amount),
                func.max(Transaction.amount),
                func.min(Transaction.amount),
            ).where(
                Transaction.sponsorship_id == sponsorship_id,
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )).one()
        donor_count, total, average, maximum, minimum = agg

        stats = {
            "donor_count": donor_count or 0,
            "total_raised": _money(total),
            "average_donation": _money(average),
            "max_donation": _money(maximum),
            "min_donation": _money(minimum),
        }
        return SponsorshipDetail(
            sponsorship=_sponsorship_row(sponsorship, patient_name),
            donations=donations,
            stats=stats,
        )

    @staticmethod
    async def get_donation_stats(db: AsyncSession) -> List[Dict[str, Any]]:
        stmt = (
            select(
                Transaction.payment_method,
                func.count(Transaction.id),
                func.sum(Transaction.amount),
                func.avg(Transaction.amount),
            )
            .where(Transaction.status == TransactionStatus.COMPLETED)
            .group_by(Transaction.payment_method)
            .order_by(Transaction.payment_method)
        )
        rows = (await db.execute(stmt)).all()
        return [
            {
                "payment_method": method,
                "donation_count": count,
                "total_amount": _money(total),
                "average_amount": _money(average),
            }
            for method, count, total, average in rows
        ]

    @staticmethod
    async def close_sponsorship(
        db: AsyncSession,
        sponsorship_id: int,
        actor_id: int,
        actor_is_admin: bool = False,
        actor_email: Optional[str] = None,
    ) -> Sponsorship:
        sponsorship = await LedgerService._lock_sponsorship(db, sponsorship_id)

        if sponsorship.beneficiary_id != actor_id and not actor_is_admin:
            raise NotAuthorizedError("Only the sponsorship owner can close it")

        if not can_transition(SPONSORSHIP_TRANSITIONS, sponsorship.status, SponsorshipStatus.CLOSED):
            raise InvalidTransitionError("sponsorship", sponsorship.status.value, SponsorshipStatus.CLOSED.value)

        previous = sponsorship.status
        sponsorship.status = SponsorshipStatus.CLOSED
        await log_event(
            db,
            AuditAction.SPONSORSHIP_CLOSED,
            actor_id=actor_id,
            actor_email=actor_email,
            entity_type="sponsorship",
            entity_id=sponsorship_id,
            metadata={"from": previous.value, "donated_amount": str(_money(sponsorship.donated_amount))},
            commit=False,
        )
        await db.commit()
        await db.refresh(sponsorship)
        logger.info("Sponsorship %s closed by user %s", sponsorship_id, actor_id)
        return sponsorship

    # --- Staged payment flow ---

    @staticmethod
    async def initiate_payment(
        db: AsyncSession,
        gateway,
        sponsorship_id: int,
        donor_id: int,
        amount: Any,
        currency: str = "usd",
    ) -> Dict[str, Any]:
        value = to_money(amount)
        sponsorship = await db.get(Sponsorship, sponsorship_id)
        if sponsorship is None:
            raise ResourceNotFoundError("Sponsorship", sponsorship_id)
        if sponsorship.status == SponsorshipStatus.CLOSED:
            raise SponsorshipClosedError(sponsorship_id)

        intent = await gateway.create_payment_intent(
            value,
            currency,
            {"sponsorship_id": sponsorship_id, "donor_id": donor_id, "type": "medical_sponsorship"},
        )
        return {
            "client_secret": intent.client_secret,
            "payment_intent_id": intent.id,
            "amount": value,
        }

    @staticmethod
    async def _existing_for_ref(db: AsyncSession, payment_ref: str) -> Optional[DonationResult]:
        row = (await db.execute(
            select(Transaction, Sponsorship)
            .join(Sponsorship, Sponsorship.id == Transaction.sponsorship_id)
            .where(Transaction.external_payment_ref == payment_ref)
            .execution_options(populate_existing=True)
        )).first()
        if row is None:
            return None
        tx, sponsorship = row
        return DonationResult(
            transaction_id=tx.id,
            sponsorship_id=tx.sponsorship_id,
            amount=_money(tx.amount),
            status=tx.status,
            new_total=_money(sponsorship.donated_amount),
            goal_amount=_money(sponsorship.goal_amount),
            is_now_funded=False,
            receipt_url=tx.receipt_url,
            duplicate=True,
        )

    @staticmethod
    async def confirm_payment(
        db: AsyncSession,
        gateway,
        payment_intent_id: str,
        sponsorship_id: int,
        donor_id: int,
        amount: Any,
        dispatcher=None,
        actor_email: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> DonationResult:
        """
        Book a gateway-confirmed payment exactly once.

        The payment intent id is the idempotency key (unique column). A repeat
        confirm, or one that loses the race on the unique constraint, returns
        the original transaction with duplicate=True and no second increment.
        Captured money is booked even past the goal; closed campaigns still
        refuse it.
        """
        if not payment_intent_id or not str(payment_intent_id).strip():
            raise InvalidInputError("payment_intent_id is required")
        value = to_money(amount)

        existing = await LedgerService._existing_for_ref(db, payment_intent_id)
        if existing is not None:
            if existing.sponsorship_id != sponsorship_id:
                raise ConflictError(
                    "Payment already booked against another sponsorship",
                    details={"payment_intent_id": payment_intent_id, "sponsorship_id": existing.sponsorship_id},
                )
            logger.info("Duplicate confirm for payment %s ignored", payment_intent_id)
            return existing

        if await db.get(Sponsorship, sponsorship_id) is None:
            raise ResourceNotFoundError("Sponsorship", sponsorship_id)

        confirmation = await gateway.confirm_payment(payment_intent_id)
        if not confirmation.succeeded:
            raise ValidationFailedError(
                f"Payment status: {confirmation.status}",
                details={"payment_intent_id": payment_intent_id, "status": confirmation.status},
            )
        if confirmation.amount and _money(confirmation.amount) != value:
            raise ValidationFailedError(
                "Confirmed amount does not match the captured payment",
                details={"requested": str(value), "captured": str(_money(confirmation.amount))},
            )

        try:
            result = await LedgerService._book_donation(
                db,
                sponsorship_id,
                donor_id,
                value,
                PaymentMethod.CARD.value,
                enforce_goal=False,
                external_payment_ref=payment_intent_id,
                external_charge_ref=confirmation.charge_id,
                receipt_url=confirmation.receipt_url,
            )
            await LedgerService._audit_donation(
                db, AuditAction.PAYMENT_CONFIRMED, result, donor_id, actor_email, ip_address
            )
            await db.commit()
        except IntegrityError:
            # Another confirm for the same intent committed first
            await db.rollback()
            existing = await LedgerService._existing_for_ref(db, payment_intent_id)
            if existing is None:
                raise DuplicateEntityError("Transaction", {"external_payment_ref": payment_intent_id})
            logger.info("Concurrent confirm for payment %s resolved as duplicate", payment_intent_id)
            return existing
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Payment %s confirmed: sponsorship=%s amount=%s total=%s",
            payment_intent_id, sponsorship_id, value, result.new_total,
        )
        if dispatcher is not None:
            dispatcher.donation_recorded(result.notice)
        return result

    @staticmethod
    async def refund_transaction(
        db: AsyncSession,
        charge_ref: Optional[str] = None,
        payment_ref: Optional[str] = None,
    ) -> RefundResult:
        """
        completed -> refunded, decrementing donated_amount in the same unit.

        A funded campaign that falls back under its goal returns to open.
        Refunding an already refunded transaction is a no-op.
        """
        if not charge_ref and not payment_ref:
            raise InvalidInputError("A charge or payment reference is required")

        query = select(Transaction).with_for_update().execution_options(populate_existing=True)
        if payment_ref:
            query = query.where(Transaction.external_payment_ref == payment_ref)
        else:
            query = query.where(Transaction.external_charge_ref == charge_ref)
        tx = (await db.execute(query)).scalars().first()
        if tx is None:
            raise ResourceNotFoundError("Transaction", payment_ref or charge_ref)

        sponsorship = await LedgerService._lock_sponsorship(db, tx.sponsorship_id)

        if tx.status == TransactionStatus.REFUNDED:
            return RefundResult(tx.id, tx.sponsorship_id, _money(tx.amount),
                                _money(sponsorship.donated_amount), reopened=False, already_refunded=True)
        if not can_transition(TRANSACTION_TRANSITIONS, tx.status, TransactionStatus.REFUNDED):
            raise InvalidTransitionError("transaction", tx.status.value, TransactionStatus.REFUNDED.value)

        try:
            marked = await db.execute(
                update(Transaction)
                .where(Transaction.id == tx.id, Transaction.status == TransactionStatus.COMPLETED)
                .values(status=TransactionStatus.REFUNDED)
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount != 1:
                raise InvalidTransitionError("transaction", tx.status.value, TransactionStatus.REFUNDED.value)

            await db.execute(
                update(Sponsorship)
                .where(Sponsorship.id == tx.sponsorship_id)
                .values(donated_amount=Sponsorship.donated_amount - tx.amount)
                .execution_options(synchronize_session=False)
            )

            new_total, goal, status = (await db.execute(
                select(Sponsorship.donated_amount, Sponsorship.goal_amount, Sponsorship.status)
                .where(Sponsorship.id == tx.sponsorship_id)
            )).one()
            new_total = _money(new_total)

            reopened = False
            if status == SponsorshipStatus.FUNDED and new_total < _money(goal):
                await db.execute(
                    update(Sponsorship)
                    .where(Sponsorship.id == tx.sponsorship_id, Sponsorship.status == SponsorshipStatus.FUNDED)
                    .values(status=SponsorshipStatus.OPEN)
                    .execution_options(synchronize_session=False)
                )
                reopened = True

            await log_event(
                db,
                AuditAction.DONATION_REFUNDED,
                entity_type="transaction",
                entity_id=tx.id,
                metadata={"sponsorship_id": tx.sponsorship_id, "amount": str(_money(tx.amount)),
                          "new_total": str(new_total), "reopened": reopened},
                commit=False,
            )
            if reopened:
                await log_event(
                    db,
                    AuditAction.SPONSORSHIP_REOPENED,
                    entity_type="sponsorship",
                    entity_id=tx.sponsorship_id,
                    metadata={"donated_amount": str(new_total)},
                    commit=False,
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Transaction %s refunded; sponsorship %s total now %s", tx.id, tx.sponsorship_id, new_total)
        return RefundResult(tx.id, tx.sponsorship_id, _money(tx.amount), new_total, reopened)

    @staticmethod
    async def mark_payment_failed(db: AsyncSession, payment_ref: str) -> int:
        """pending -> failed for transactions carrying this gateway reference."""
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.external_payment_ref == payment_ref,
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(status=TransactionStatus.FAILED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            await log_event(
                db,
                AuditAction.PAYMENT_FAILED,
                entity_type="transaction",
                metadata={"payment_intent_id": payment_ref},
                commit=False,
            )
        await db.commit()
        return result.rowcount

    @staticmethod
    async def handle_webhook_event(db: AsyncSession, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in LEDGER_WEBHOOK_EVENTS and not obj.get("id"):
            logger.warning("Webhook %s without an object id ignored", event_type)
            return {"received": True, "handled": None, "updated": 0}

        if event_type == "payment_intent.payment_failed":
            count = await LedgerService.mark_payment_failed(db, obj.get("id"))
            logger.warning("Payment failed: %s (%s pending transactions marked)", obj.get("id"), count)
            return {"received": True, "handled": event_type, "updated": count}

        if event_type == "charge.refunded":
            try:
                refund = await LedgerService.refund_transaction(
                    db, charge_ref=obj.get("id"), payment_ref=obj.get("payment_intent")
                )
            except ResourceNotFoundError:
                logger.warning("Refund for unknown charge %s ignored", obj.get("id"))
                return {"received": True, "handled": event_type, "updated": 0}
            return {"received": True, "handled": event_type, "updated": 0 if refund.already_refunded else 1}

        if event_type == "payment_intent.succeeded":
            # Booking happens on explicit confirm, keyed by the same intent id
            logger.info("Payment succeeded: %s", obj.get("id"))
            return {"received": True, "handled": event_type, "updated": 0}

        logger.info("Unhandled webhook event type: %s", event_type)
        return {"received": True, "handled": None, "updated": 0}


def _sponsorship_row(sponsorship: Sponsorship, patient_name: Optional[str]) -> Dict[str, Any]:
    return {
        "id": sponsorship.id,
        "beneficiary_id": sponsorship.beneficiary_id,
        "patient_name": patient_name,
        "treatment_type": sponsorship.treatment_type,
        "description": sponsorship.description,
        "goal_amount": _money(sponsorship.goal_amount),
        "donated_amount": _money(sponsorship.donated_amount),
        "status": sponsorship.status.value,
        "created_at": sponsorship.created_at,
    }
