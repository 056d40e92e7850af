"""
Charge Executor

Issues the processor charge for a settlement decision and persists the
result: payment ledger entry first, then the penalty row's terminal
status. A processor success is never retried; if persisting it fails
the mismatch is logged with the PaymentIntent id and surfaced as
PersistenceAfterChargeError for out-of-band audit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from settlement_backend.src.settlement.domain import (
    ChargeType,
    PaymentStatus,
    PenaltySettlement,
    SettlementCandidate,
    SettlementStatus,
)
from settlement_backend.src.settlement.external import (
    ChargeRequest,
    PaymentProcessor,
    ProcessorCharge,
    StripeIdempotencyManager,
)
from settlement_backend.src.settlement.ledger import charge_payment, unchargeable_payment
from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.exceptions import (
    BelowMinimumChargeError,
    PersistenceAfterChargeError,
    ProcessorError,
)

logger = logging.getLogger(__name__)

ZERO_AMOUNT_MARKER = "zero_amount"
BELOW_MINIMUM_MARKER = "below_minimum"


class ExecutionOutcome(Enum):
    CHARGED = "charged"
    ZERO_AMOUNT = "zero_amount"
    BELOW_MINIMUM = "below_minimum"
    CHARGE_FAILED = "charge_failed"
    ALREADY_SETTLED = "already_settled"


@dataclass
class ExecutionResult:
    """What happened to one candidate handed to the executor."""
    outcome: ExecutionOutcome
    charge_type: ChargeType
    amount_cents: int = 0
    payment_intent_id: Optional[str] = None
    error: Optional[str] = None


class ChargeExecutor:
    """
    Executes settlement charges against the processor.

    Usage:
        executor = ChargeExecutor(repository, stripe_payment_processor, stripe_idempotency_manager)
        result = await executor.charge(candidate, ChargeType.ACTUAL, 300)
    """

    def __init__(
        self,
        repository: SettlementRepository,
        processor: PaymentProcessor,
        idempotency: StripeIdempotencyManager,
        currency: str = "usd"
    ):
        self.repository = repository
        self.processor = processor
        self.idempotency = idempotency
        self.currency = currency

    async def settle_without_charge(
        self,
        candidate: SettlementCandidate,
        charge_type: ChargeType,
        actual_amount_cents: Optional[int],
        marker: str
    ) -> ExecutionResult:
        """
        Move a candidate to its terminal status with nothing charged.

        Used for zero amounts and amounts below the processor minimum,
        so the candidate is not picked up again on every run.
        """
        await self.repository.record_payment(
            unchargeable_payment(candidate, charge_type, self.currency, marker)
        )
        written = await self.repository.settle_penalty(
            candidate.user_id,
            candidate.week_key,
            PenaltySettlement(
                status=charge_type.settled_status,
                charged_amount_cents=0,
                total_penalty_cents=candidate.total_penalty_cents,
                actual_amount_cents=actual_amount_cents,
                charged_at=datetime.now(timezone.utc),
            ),
        )
        if not written:
            logger.info(
                f"[CHARGE] {candidate.user_id}/{candidate.week_key} settled by another run before {marker} write"
            )
            return ExecutionResult(outcome=ExecutionOutcome.ALREADY_SETTLED, charge_type=charge_type)

        outcome = ExecutionOutcome.ZERO_AMOUNT if marker == ZERO_AMOUNT_MARKER else ExecutionOutcome.BELOW_MINIMUM
        logger.info(f"[CHARGE] {candidate.user_id}/{candidate.week_key} settled at 0 ({marker})")
        return ExecutionResult(outcome=outcome, charge_type=charge_type)

    async def charge(
        self,
        candidate: SettlementCandidate,
        charge_type: ChargeType,
        amount_cents: int,
        actual_amount_cents: Optional[int] = None
    ) -> ExecutionResult:
        """
        Charge a candidate and persist the outcome.

        Args:
            candidate: Candidate that passed the decision rules
            charge_type: actual or worst_case
            amount_cents: Amount to charge (already capped)
            actual_amount_cents: Usage-derived amount recorded for audit

        Returns:
            ExecutionResult

        Raises:
            PersistenceAfterChargeError: Charge succeeded, local write failed
        """
        commitment = candidate.commitment
        request = ChargeRequest(
            amount_cents=amount_cents,
            currency=self.currency,
            customer_id=candidate.user.stripe_customer_id,
            payment_method_id=commitment.saved_payment_method_id,
            description=f"week ending {candidate.week_key} ({charge_type.value})",
            idempotency_key=self.idempotency.generate_settlement_key(
                candidate.user_id, candidate.week_key, charge_type.value, amount_cents
            ),
            metadata={
                'user_id': candidate.user_id,
                'commitment_id': commitment.id,
                'week_end_date': candidate.week_key,
                'charge_type': charge_type.value,
            },
        )

        try:
            charge = await self.processor.create_charge(request)
        except BelowMinimumChargeError:
            logger.info(f"[CHARGE] Processor rejected {amount_cents} cents as below minimum for {candidate.user_id}")
            return await self.settle_without_charge(
                candidate, charge_type, actual_amount_cents, BELOW_MINIMUM_MARKER
            )
        except ProcessorError as e:
            logger.warning(f"[CHARGE] Charge failed for {candidate.user_id}/{candidate.week_key}: {e.message}")
            await self._mark_charge_failed(candidate, actual_amount_cents, e.message)
            return ExecutionResult(
                outcome=ExecutionOutcome.CHARGE_FAILED,
                charge_type=charge_type,
                amount_cents=amount_cents,
                payment_intent_id=e.payment_intent_id,
                error=e.message,
            )

        return await self._persist_charge(candidate, charge_type, charge, actual_amount_cents)

    async def _persist_charge(
        self,
        candidate: SettlementCandidate,
        charge_type: ChargeType,
        charge: ProcessorCharge,
        actual_amount_cents: Optional[int]
    ) -> ExecutionResult:
        payment = charge_payment(candidate, charge_type, charge, self.currency)
        failed = payment.status in (PaymentStatus.FAILED, PaymentStatus.REQUIRES_ACTION)

        settlement = PenaltySettlement(
            status=SettlementStatus.CHARGE_FAILED if failed else charge_type.settled_status,
            charged_amount_cents=0 if failed else charge.amount_cents,
            total_penalty_cents=candidate.total_penalty_cents,
            actual_amount_cents=actual_amount_cents,
            charge_payment_intent_id=charge.payment_intent_id,
            charged_at=None if failed else datetime.now(timezone.utc),
            last_error=f"payment_intent status {charge.status}" if failed else None,
        )

        try:
            await self.repository.record_payment(payment)
            written = await self.repository.settle_penalty(candidate.user_id, candidate.week_key, settlement)
        except Exception as e:
            logger.critical(
                f"[CHARGE] PaymentIntent {charge.payment_intent_id} for {candidate.user_id}/{candidate.week_key} "
                f"({charge.amount_cents} cents) succeeded at Stripe but was not persisted: {e}"
            )
            raise PersistenceAfterChargeError(
                transaction_id=charge.payment_intent_id,
                user_id=candidate.user_id,
                week_key=candidate.week_key,
                amount_cents=charge.amount_cents,
                cause=e,
            ) from e

        if not written:
            logger.critical(
                f"[CHARGE] PaymentIntent {charge.payment_intent_id} for {candidate.user_id}/{candidate.week_key} "
                f"charged but the row was already settled by another run"
            )
            raise PersistenceAfterChargeError(
                transaction_id=charge.payment_intent_id,
                user_id=candidate.user_id,
                week_key=candidate.week_key,
                amount_cents=charge.amount_cents,
                cause=RuntimeError("penalty row already settled"),
            )

        if failed:
            logger.warning(f"[CHARGE] PaymentIntent {charge.payment_intent_id} ended in {charge.status}")
            return ExecutionResult(
                outcome=ExecutionOutcome.CHARGE_FAILED,
                charge_type=charge_type,
                amount_cents=charge.amount_cents,
                payment_intent_id=charge.payment_intent_id,
                error=f"payment_intent status {charge.status}",
            )

        logger.info(
            f"[CHARGE] Charged {charge.amount_cents} cents ({charge_type.value}) "
            f"to {candidate.user_id} for {candidate.week_key}: {charge.payment_intent_id}"
        )
        return ExecutionResult(
            outcome=ExecutionOutcome.CHARGED,
            charge_type=charge_type,
            amount_cents=charge.amount_cents,
            payment_intent_id=charge.payment_intent_id,
        )

    async def _mark_charge_failed(
        self,
        candidate: SettlementCandidate,
        actual_amount_cents: Optional[int],
        message: str
    ) -> None:
        try:
            await self.repository.settle_penalty(
                candidate.user_id,
                candidate.week_key,
                PenaltySettlement(
                    status=SettlementStatus.CHARGE_FAILED,
                    charged_amount_cents=0,
                    total_penalty_cents=candidate.total_penalty_cents,
                    actual_amount_cents=actual_amount_cents,
                    last_error=message,
                ),
            )
        except Exception as e:
            logger.error(f"[CHARGE] Could not record charge_failed for {candidate.user_id}/{candidate.week_key}: {e}")
