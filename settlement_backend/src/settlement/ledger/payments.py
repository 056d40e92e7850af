"""
Payment Ledger Entries

Builders for the append-only payments table. Every processor
transaction gets exactly one entry; settlements that never reached the
processor (zero or below-minimum amounts) get a not_charged entry so
the audit trail explains why nothing was charged.
"""

from typing import Optional

from settlement_backend.src.settlement.domain import (
    ChargeType,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    ReconciliationCandidate,
    SettlementCandidate,
)
from settlement_backend.src.settlement.external import ProcessorCharge, ProcessorRefund


def charge_payment(
    candidate: SettlementCandidate,
    charge_type: ChargeType,
    charge: ProcessorCharge,
    currency: str
) -> PaymentRecord:
    """Ledger entry for a settlement charge."""
    return PaymentRecord(
        user_id=candidate.user_id,
        week_key=candidate.week_key,
        amount_cents=charge.amount_cents,
        currency=currency,
        payment_type=charge_type.payment_type,
        status=PaymentStatus.from_processor(charge.status),
        commitment_id=candidate.commitment.id,
        stripe_payment_intent_id=charge.payment_intent_id,
        stripe_charge_id=charge.charge_id,
    )


def unchargeable_payment(
    candidate: SettlementCandidate,
    charge_type: ChargeType,
    currency: str,
    marker: str
) -> PaymentRecord:
    """
    Ledger entry for a settlement that was not sent to the processor.

    Args:
        marker: zero_amount or below_minimum
    """
    return PaymentRecord(
        user_id=candidate.user_id,
        week_key=candidate.week_key,
        amount_cents=0,
        currency=currency,
        payment_type=charge_type.payment_type,
        status=PaymentStatus.NOT_CHARGED,
        commitment_id=candidate.commitment.id,
        note=marker,
    )


def refund_payment(
    candidate: ReconciliationCandidate,
    refund: ProcessorRefund,
    currency: str
) -> PaymentRecord:
    """Ledger entry for a reconciliation refund, linked to the original charge."""
    return PaymentRecord(
        user_id=candidate.user_id,
        week_key=candidate.week_key,
        amount_cents=refund.amount_cents,
        currency=currency,
        payment_type=PaymentType.PENALTY_REFUND,
        status=PaymentStatus.from_processor(refund.status),
        commitment_id=candidate.commitment.id if candidate.commitment else None,
        stripe_refund_id=refund.refund_id,
        related_payment_intent_id=candidate.penalty.charge_payment_intent_id,
    )


def adjustment_payment(
    candidate: ReconciliationCandidate,
    charge: ProcessorCharge,
    currency: str,
    related_payment_intent_id: Optional[str] = None
) -> PaymentRecord:
    """Ledger entry for a reconciliation top-up charge."""
    return PaymentRecord(
        user_id=candidate.user_id,
        week_key=candidate.week_key,
        amount_cents=charge.amount_cents,
        currency=currency,
        payment_type=PaymentType.PENALTY_ADJUSTMENT,
        status=PaymentStatus.from_processor(charge.status),
        commitment_id=candidate.commitment.id if candidate.commitment else None,
        stripe_payment_intent_id=charge.payment_intent_id,
        stripe_charge_id=charge.charge_id,
        related_payment_intent_id=related_payment_intent_id or candidate.penalty.charge_payment_intent_id,
    )
