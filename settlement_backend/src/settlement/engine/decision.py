"""
Settlement Decision

Pure decision for one settlement candidate. Rules are applied in order:

1. Already settled (terminal status)        -> skip
2. Grace period not expired                  -> skip (even with zero usage)
3. Usage synced  -> actual, min(penalty, max_charge_cents)
   Not synced    -> worst_case, max_charge_cents
4. No Stripe customer / no payment method    -> missing prerequisite
5. Zero or below the processor minimum       -> settle at 0 without charging
6. Otherwise                                 -> charge
"""

from datetime import datetime
from typing import Optional

from settlement_backend.src.settlement.domain import (
    ChargeType,
    DecisionAction,
    SettlementCandidate,
    SettlementDecision,
)
from settlement_backend.src.settlement.shared.config import STRIPE_MINIMUM_CENTS
from settlement_backend.src.settlement.shared.timing import SettlementConfig, is_grace_period_expired


def charge_amount(candidate: SettlementCandidate) -> tuple:
    """Return (charge_type, amount_cents, actual_amount_cents) for a candidate past grace."""
    max_charge = max(0, candidate.commitment.max_charge_cents)
    if candidate.has_synced_usage():
        amount = min(max(0, candidate.total_penalty_cents), max_charge)
        return ChargeType.ACTUAL, amount, amount
    return ChargeType.WORST_CASE, max_charge, None


def decide(
    candidate: SettlementCandidate,
    config: SettlementConfig,
    now: Optional[datetime] = None
) -> SettlementDecision:
    """
    Decide what settlement does with one candidate.

    Args:
        candidate: Joined commitment, user, penalty and usage count
        config: Operating mode
        now: Reference time for the grace check

    Returns:
        SettlementDecision; only CHARGE, SETTLE_ZERO_AMOUNT and
        SETTLE_BELOW_MINIMUM lead to writes
    """
    if candidate.status.is_settled():
        return SettlementDecision(action=DecisionAction.SKIP_ALREADY_SETTLED)

    commitment = candidate.commitment
    if not is_grace_period_expired(
        commitment.week_end_date,
        commitment.created_at,
        commitment.week_grace_expires_at,
        config,
        now,
    ):
        return SettlementDecision(action=DecisionAction.SKIP_GRACE_NOT_EXPIRED)

    charge_type, amount, actual = charge_amount(candidate)
    decision = SettlementDecision(
        action=DecisionAction.CHARGE,
        amount_cents=amount,
        charge_type=charge_type,
        actual_amount_cents=actual,
    )

    if not candidate.user or not candidate.user.stripe_customer_id:
        decision.action = DecisionAction.MISSING_STRIPE_CUSTOMER
    elif not commitment.saved_payment_method_id:
        decision.action = DecisionAction.MISSING_PAYMENT_METHOD
    elif amount <= 0:
        decision.action = DecisionAction.SETTLE_ZERO_AMOUNT
    elif amount < STRIPE_MINIMUM_CENTS:
        decision.action = DecisionAction.SETTLE_BELOW_MINIMUM
    return decision
