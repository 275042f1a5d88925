"""
Ledger enumerations and status transition tables.
"""

import enum


class SponsorshipStatus(str, enum.Enum):
    """Sponsorship campaign status enumeration."""
    OPEN = "open"  # Accepting donations
    FUNDED = "funded"  # donated_amount reached goal_amount
    CLOSED = "closed"  # Closed manually, rejects donations


class TransactionStatus(str, enum.Enum):
    """Donation transaction status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    BANK = "bank"


SPONSORSHIP_TRANSITIONS = {
    SponsorshipStatus.OPEN: {SponsorshipStatus.FUNDED, SponsorshipStatus.CLOSED},
    # A refund can pull a funded campaign back under its goal
    SponsorshipStatus.FUNDED: {SponsorshipStatus.OPEN, SponsorshipStatus.CLOSED},
    SponsorshipStatus.CLOSED: set(),
}

TRANSACTION_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.COMPLETED, TransactionStatus.FAILED},
    TransactionStatus.COMPLETED: {TransactionStatus.REFUNDED},
    TransactionStatus.FAILED: set(),
    TransactionStatus.REFUNDED: set(),
}


def can_transition(table, current, target) -> bool:
    return target in table.get(current, set())
