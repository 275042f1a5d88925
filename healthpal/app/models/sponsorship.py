"""
Sponsorship database model.

A fundraising campaign tied to one patient's treatment.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from healthpal.app.db.session import Base
from healthpal.app.models.enums import enum_values
from healthpal.app.models.ledger_enums import SponsorshipStatus


class Sponsorship(Base):
    """
    Sponsorship model.

    donated_amount only moves through the ledger service: incremented by a
    completed donation, decremented by an explicit refund. It must always equal
    the sum of completed transactions for the campaign.
    """
    __tablename__ = "sponsorships"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Owning patient
    beneficiary_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    treatment_type = Column(String(150), nullable=False)
    description = Column(Text, nullable=False)

    # Financials
    goal_amount = Column(Numeric(12, 2), nullable=False)
    donated_amount = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(
        Enum(SponsorshipStatus, values_callable=enum_values),
        default=SponsorshipStatus.OPEN,
        nullable=False,
        index=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('goal_amount > 0', name='ck_sponsorships_goal_positive'),
        CheckConstraint('donated_amount >= 0', name='ck_sponsorships_donated_non_negative'),
    )

    def __repr__(self):
        return f"<Sponsorship(id={self.id}, status='{self.status.value}', {self.donated_amount}/{self.goal_amount})>"
