"""Payment domain events, published after commit."""

from dataclasses import dataclass
from decimal import Decimal

from shared.domain.base import DomainEvent


@dataclass
class PaymentVerified(DomainEvent):
    payment_id: int
    reference: str
    amount: Decimal
    currency: str
    requires_refund: bool = False


@dataclass
class PaymentFailed(DomainEvent):
    """The attempt is over; failure_reason is 'amount_mismatch' or the gateway's message"""
    payment_id: int
    reference: str
    failure_reason: str
