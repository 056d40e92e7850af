"""
Settlement State Machine

Closed enums for penalty settlement status, charge types, payment
ledger entry types and per-candidate outcomes.

    pending ──► charge_failed ──► (retried next run)
       │              │
       ▼              ▼
    charged_actual / charged_worst_case ──► refunded_partial ──► refunded
       │
       ▼
    charged_actual_adjusted
"""

from enum import Enum
from typing import Optional


class SettlementStatus(Enum):
    """Settlement status of a UserWeekPenalty row."""
    PENDING = "pending"
    CHARGE_FAILED = "charge_failed"
    CHARGED_ACTUAL = "charged_actual"
    CHARGED_ACTUAL_ADJUSTED = "charged_actual_adjusted"
    CHARGED_WORST_CASE = "charged_worst_case"
    REFUNDED = "refunded"
    REFUNDED_PARTIAL = "refunded_partial"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'SettlementStatus':
        """Parse a stored status; a missing value means the row was never settled."""
        if value is None:
            return cls.PENDING
        if isinstance(value, cls):
            return value
        return cls(value)

    def is_settled(self) -> bool:
        """Terminal statuses are never charged again by settlement."""
        return self in SETTLED_STATUSES


SETTLED_STATUSES = frozenset({
    SettlementStatus.CHARGED_ACTUAL,
    SettlementStatus.CHARGED_ACTUAL_ADJUSTED,
    SettlementStatus.CHARGED_WORST_CASE,
    SettlementStatus.REFUNDED,
    SettlementStatus.REFUNDED_PARTIAL,
})


class ChargeType(Enum):
    """Which amount a settlement charges."""
    ACTUAL = "actual"
    WORST_CASE = "worst_case"

    @property
    def settled_status(self) -> SettlementStatus:
        if self is ChargeType.ACTUAL:
            return SettlementStatus.CHARGED_ACTUAL
        return SettlementStatus.CHARGED_WORST_CASE

    @property
    def payment_type(self) -> 'PaymentType':
        if self is ChargeType.ACTUAL:
            return PaymentType.PENALTY_ACTUAL
        return PaymentType.PENALTY_WORST_CASE


class PaymentType(Enum):
    """Kinds of payment ledger entries."""
    PENALTY_ACTUAL = "penalty_actual"
    PENALTY_WORST_CASE = "penalty_worst_case"
    PENALTY_REFUND = "penalty_refund"
    PENALTY_ADJUSTMENT = "penalty_adjustment"


class PaymentStatus(Enum):
    """Status recorded on a payment ledger entry."""
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"
    NOT_CHARGED = "not_charged"

    @classmethod
    def from_processor(cls, value: Optional[str]) -> 'PaymentStatus':
        """Map a Stripe PaymentIntent/Refund status onto the ledger status."""
        if value in ("succeeded",):
            return cls.SUCCEEDED
        if value in ("processing", "pending"):
            return cls.PROCESSING
        if value in ("requires_action", "requires_confirmation"):
            return cls.REQUIRES_ACTION
        return cls.FAILED


class DecisionAction(Enum):
    """Outcome of deciding one settlement candidate."""
    SKIP_ALREADY_SETTLED = "already_settled"
    SKIP_GRACE_NOT_EXPIRED = "grace_not_expired"
    MISSING_STRIPE_CUSTOMER = "missing_stripe_customer"
    MISSING_PAYMENT_METHOD = "missing_payment_method"
    SETTLE_ZERO_AMOUNT = "zero_amount"
    SETTLE_BELOW_MINIMUM = "below_minimum"
    CHARGE = "charge"


class ReconciliationAction(Enum):
    """Outcome of reconciling one flagged penalty row."""
    REFUND = "refund"
    CHARGE = "charge"
    SKIP_ZERO_DELTA = "zero_delta"
    SKIP_BELOW_MINIMUM = "below_minimum"
    SKIP_MISSING_STRIPE_CUSTOMER = "missing_stripe_customer"
    SKIP_MISSING_PAYMENT_METHOD = "missing_payment_method"
    SKIP_MISSING_PAYMENT_INTENT = "missing_payment_intent"
