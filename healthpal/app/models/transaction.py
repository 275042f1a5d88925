"""
Transaction database model.

Append-only record of a single donation against a sponsorship.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from healthpal.app.db.session import Base
from healthpal.app.models.enums import enum_values
from healthpal.app.models.ledger_enums import TransactionStatus


class Transaction(Base):
    """
    Transaction model.

    sponsorship_id, donor_id and amount never change after insert; only status
    moves, and only along TRANSACTION_TRANSITIONS.
    external_payment_ref is unique so a gateway confirmation is booked once.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    sponsorship_id = Column(Integer, ForeignKey('sponsorships.id'), nullable=False, index=True)
    donor_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(30), nullable=False)

    status = Column(
        Enum(TransactionStatus, values_callable=enum_values),
        default=TransactionStatus.PENDING,
        nullable=False,
        index=True
    )

    # Gateway reconciliation
    external_payment_ref = Column(String(255), unique=True, nullable=True)
    external_charge_ref = Column(String(255), nullable=True, index=True)
    receipt_url = Column(String(500), nullable=True)

    # Timestamps (created_at immutable)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_transactions_amount_positive'),
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, sponsorship={self.sponsorship_id}, amount={self.amount}, status='{self.status.value}')>"
