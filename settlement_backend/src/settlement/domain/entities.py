"""
Settlement Domain Entities

Typed records returned by the data-access layer. They are snapshots:
mutations go through SettlementRepository methods, never by editing
these objects.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from .status import ChargeType, DecisionAction, PaymentStatus, PaymentType, SettlementStatus


@dataclass(frozen=True)
class Commitment:
    """
    One user's limit agreement for one week.

    Attributes:
        id: Commitment id
        user_id: Owning user
        week_end_date: Week key (the deadline, legacy column name)
        max_charge_cents: Pre-authorized maximum charge
        status: Lifecycle status (pending, active, completed, ...)
        created_at: When the commitment was locked in
        week_grace_expires_at: Explicit grace expiry, overrides computed grace
        saved_payment_method_id: Processor payment method to charge
        limit_minutes: Daily usage limit
        penalty_per_minute_cents: Penalty rate above the limit
        monitoring_status: ok / revoked
        monitoring_revoked_at: When monitoring permission was revoked
    """
    id: str
    user_id: str
    week_end_date: str
    max_charge_cents: int
    status: str
    created_at: Optional[datetime] = None
    week_grace_expires_at: Optional[datetime] = None
    saved_payment_method_id: Optional[str] = None
    limit_minutes: int = 0
    penalty_per_minute_cents: int = 0
    monitoring_status: Optional[str] = None
    monitoring_revoked_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserAccount:
    """Read-only projection of a user for billing."""
    id: str
    email: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    has_active_payment_method: bool = False


@dataclass(frozen=True)
class UserWeekPenalty:
    """Per-user, per-week financial ledger row."""
    user_id: str
    week_key: str
    total_penalty_cents: int = 0
    status: SettlementStatus = SettlementStatus.PENDING
    charged_amount_cents: int = 0
    actual_amount_cents: Optional[int] = None
    refund_amount_cents: int = 0
    charge_payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    charged_at: Optional[datetime] = None
    refund_issued_at: Optional[datetime] = None
    needs_reconciliation: bool = False
    reconciliation_delta_cents: int = 0
    reconciliation_reason: Optional[str] = None
    reconciliation_detected_at: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class PaymentRecord:
    """One immutable payment ledger entry."""
    user_id: str
    week_key: str
    amount_cents: int
    currency: str
    payment_type: PaymentType
    status: PaymentStatus
    commitment_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_charge_id: Optional[str] = None
    stripe_refund_id: Optional[str] = None
    related_payment_intent_id: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class EstimatedUsage:
    """A daily usage row estimated for a day without monitoring."""
    commitment_id: str
    user_id: str
    usage_date: date
    used_minutes: int
    limit_minutes: int
    exceeded_minutes: int
    penalty_cents: int


@dataclass(frozen=True)
class PenaltySettlement:
    """Values written when a candidate reaches a settlement outcome."""
    status: SettlementStatus
    charged_amount_cents: int
    total_penalty_cents: int
    actual_amount_cents: Optional[int] = None
    charge_payment_intent_id: Optional[str] = None
    charged_at: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class PenaltyReconciliation:
    """Values written when a flagged row is reconciled."""
    status: SettlementStatus
    charged_amount_cents: int
    refund_amount_cents: int
    refund_id: Optional[str] = None
    refund_issued_at: Optional[datetime] = None


@dataclass(frozen=True)
class LateUsageUpdate:
    """Values written when usage arrives after settlement."""
    total_penalty_cents: int
    actual_amount_cents: int
    needs_reconciliation: bool
    reconciliation_delta_cents: int
    reconciliation_reason: Optional[str]
    reconciliation_detected_at: Optional[datetime]


@dataclass
class SettlementCandidate:
    """One user's commitment for one week with its ledger and usage state."""
    commitment: Commitment
    user: Optional[UserAccount]
    penalty: Optional[UserWeekPenalty]
    usage_row_count: int = 0

    @property
    def user_id(self) -> str:
        return self.commitment.user_id

    @property
    def week_key(self) -> str:
        return self.commitment.week_end_date

    @property
    def status(self) -> SettlementStatus:
        return self.penalty.status if self.penalty else SettlementStatus.PENDING

    @property
    def total_penalty_cents(self) -> int:
        return self.penalty.total_penalty_cents if self.penalty else 0

    def has_synced_usage(self) -> bool:
        """Usage counts as synced if any usage row exists, or a legacy actual amount was stored."""
        if self.usage_row_count > 0:
            return True
        return self.penalty is not None and self.penalty.actual_amount_cents is not None


@dataclass
class SettlementDecision:
    """What to do with one candidate."""
    action: DecisionAction
    amount_cents: int = 0
    charge_type: Optional[ChargeType] = None
    actual_amount_cents: Optional[int] = None


@dataclass
class ReconciliationCandidate:
    """A flagged penalty row joined with its user and commitment."""
    penalty: UserWeekPenalty
    user: Optional[UserAccount] = None
    commitment: Optional[Commitment] = None

    @property
    def user_id(self) -> str:
        return self.penalty.user_id

    @property
    def week_key(self) -> str:
        return self.penalty.week_key

    @property
    def delta_cents(self) -> int:
        return self.penalty.reconciliation_delta_cents


@dataclass
class SettlementSummary:
    """Structured result of one settlement run."""
    week_end_date: str
    total_commitments: int = 0
    candidates_with_usage: int = 0
    candidates_without_usage: int = 0
    grace_not_expired: int = 0
    already_settled: int = 0
    locked: int = 0
    missing_payment_method: int = 0
    missing_stripe_customer: int = 0
    zero_amount: int = 0
    below_minimum: int = 0
    estimated_rows_inserted: int = 0
    charged_actual: int = 0
    charged_worst_case: int = 0
    charge_failures: list = field(default_factory=list)
    persistence_failures: list = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to the camelCase response body."""
        return {
            'weekEndDate': self.week_end_date,
            'totalCommitments': self.total_commitments,
            'candidatesWithUsage': self.candidates_with_usage,
            'candidatesWithoutUsage': self.candidates_without_usage,
            'graceNotExpired': self.grace_not_expired,
            'alreadySettled': self.already_settled,
            'locked': self.locked,
            'missingPaymentMethod': self.missing_payment_method,
            'missingStripeCustomer': self.missing_stripe_customer,
            'zeroAmount': self.zero_amount,
            'belowMinimum': self.below_minimum,
            'estimatedRowsInserted': self.estimated_rows_inserted,
            'chargedActual': self.charged_actual,
            'chargedWorstCase': self.charged_worst_case,
            'chargeFailures': list(self.charge_failures),
            'persistenceFailures': list(self.persistence_failures),
        }


@dataclass
class ReconciliationSummary:
    """Structured result of one reconciliation run."""
    dry_run: bool
    requested_limit: int
    total_candidates: int = 0
    processed: int = 0
    refunds_issued: int = 0
    charges_issued: int = 0
    skipped: dict = field(default_factory=lambda: {
        'zeroDelta': 0,
        'belowMinimum': 0,
        'missingStripeCustomer': 0,
        'missingPaymentMethod': 0,
        'missingPaymentIntent': 0,
    })
    failures: list = field(default_factory=list)
    details: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'dryRun': self.dry_run,
            'requestedLimit': self.requested_limit,
            'totalCandidates': self.total_candidates,
            'processed': self.processed,
            'refundsIssued': self.refunds_issued,
            'chargesIssued': self.charges_issued,
            'skipped': dict(self.skipped),
            'failures': list(self.failures),
            'details': list(self.details),
        }
