"""Domain entities for the settlement module."""

from .entities import (
    Commitment,
    EstimatedUsage,
    LateUsageUpdate,
    PaymentRecord,
    PenaltyReconciliation,
    PenaltySettlement,
    ReconciliationCandidate,
    ReconciliationSummary,
    SettlementCandidate,
    SettlementDecision,
    SettlementSummary,
    UserAccount,
    UserWeekPenalty,
)
from .status import (
    SETTLED_STATUSES,
    ChargeType,
    DecisionAction,
    PaymentStatus,
    PaymentType,
    ReconciliationAction,
    SettlementStatus,
)

__all__ = [
    'Commitment',
    'EstimatedUsage',
    'LateUsageUpdate',
    'PaymentRecord',
    'PenaltyReconciliation',
    'PenaltySettlement',
    'ReconciliationCandidate',
    'ReconciliationSummary',
    'SettlementCandidate',
    'SettlementDecision',
    'SettlementSummary',
    'UserAccount',
    'UserWeekPenalty',
    'SETTLED_STATUSES',
    'ChargeType',
    'DecisionAction',
    'PaymentStatus',
    'PaymentType',
    'ReconciliationAction',
    'SettlementStatus',
]
