"""
Reconciliation Worker

Corrects settled penalties after usage arrives late. Processes a bounded
batch of flagged rows, oldest detection first:

- delta == 0  -> clear the flag, no processor call
- delta < 0   -> refund abs(delta) against the original charge
- delta > 0   -> charge delta off-session; a delta below the processor
                minimum clears the flag without a charge

The flag is cleared only after the processor call and the database
update both succeed. Missing prerequisites and PaymentIntents that did
not succeed leave the row flagged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from settlement_backend.core.conf import settings
from settlement_backend.src.settlement.domain import (
    PaymentStatus,
    PenaltyReconciliation,
    ReconciliationAction,
    ReconciliationCandidate,
    ReconciliationSummary,
    SettlementStatus,
)
from settlement_backend.src.settlement.external import (
    ChargeRequest,
    PaymentProcessor,
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)
from settlement_backend.src.settlement.ledger import adjustment_payment, refund_payment
from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.config import (
    RECONCILIATION_REASON_LATE_SYNC,
    REFUND_METADATA_REASON,
    STRIPE_MINIMUM_CENTS,
)
from settlement_backend.src.settlement.shared.exceptions import (
    BelowMinimumChargeError,
    ProcessorError,
    ReconciliationError,
    SettlementError,
)

logger = logging.getLogger(__name__)

_SKIP_COUNTERS = {
    ReconciliationAction.SKIP_ZERO_DELTA: 'zeroDelta',
    ReconciliationAction.SKIP_BELOW_MINIMUM: 'belowMinimum',
    ReconciliationAction.SKIP_MISSING_STRIPE_CUSTOMER: 'missingStripeCustomer',
    ReconciliationAction.SKIP_MISSING_PAYMENT_METHOD: 'missingPaymentMethod',
    ReconciliationAction.SKIP_MISSING_PAYMENT_INTENT: 'missingPaymentIntent',
}


@dataclass
class ReconciliationResult:
    action: ReconciliationAction
    amount_cents: int = 0


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """Clamp a requested batch size to [1, maximum]."""
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


class ReconciliationWorker:
    """
    Processes rows flagged needs_reconciliation.

    Usage:
        worker = ReconciliationWorker(repository, stripe_payment_processor)
        summary = await worker.run(limit=25, dry_run=True)
    """

    def __init__(
        self,
        repository: SettlementRepository,
        processor: PaymentProcessor,
        idempotency: StripeIdempotencyManager = stripe_idempotency_manager,
        currency: Optional[str] = None,
        default_limit: Optional[int] = None,
        max_limit: Optional[int] = None
    ):
        self.repository = repository
        self.processor = processor
        self.idempotency = idempotency
        self.currency = currency or settings.SETTLEMENT_CURRENCY
        self.default_limit = default_limit or settings.RECONCILIATION_DEFAULT_LIMIT
        self.max_limit = max_limit or settings.RECONCILIATION_MAX_LIMIT

    async def run(
        self,
        limit: Optional[int] = None,
        week_key: Optional[str] = None,
        user_id: Optional[str] = None,
        dry_run: bool = False
    ) -> ReconciliationSummary:
        """
        Reconcile one batch of flagged penalty rows.

        Args:
            limit: Batch size, clamped to [1, max_limit]
            week_key: Only rows of this week
            user_id: Only rows of this user
            dry_run: Decide and report without calling Stripe or writing

        Returns:
            ReconciliationSummary

        Raises:
            ConfigurationError: Processor credentials are missing
        """
        self.processor.ensure_configured()
        requested_limit = clamp_limit(limit, self.default_limit, self.max_limit)
        summary = ReconciliationSummary(dry_run=dry_run, requested_limit=requested_limit)

        candidates = await self._load_candidates(requested_limit, week_key, user_id)
        summary.total_candidates = len(candidates)
        if not candidates:
            logger.info("[RECONCILIATION] No rows need reconciliation")
            return summary

        logger.info(f"[RECONCILIATION] Processing {len(candidates)} flagged rows (dry_run={dry_run})")

        for candidate in candidates:
            try:
                result = await self._reconcile_locked(candidate, dry_run)
            except Exception as e:
                reason = e.message if isinstance(e, SettlementError) else str(e)
                logger.error(f"[RECONCILIATION] Failed for {candidate.user_id}/{candidate.week_key}: {reason}")
                summary.failures.append({
                    'userId': candidate.user_id,
                    'weekStartDate': candidate.week_key,
                    'reason': reason,
                })
                continue

            if result is None:
                continue

            skip_counter = _SKIP_COUNTERS.get(result.action)
            if skip_counter:
                summary.skipped[skip_counter] += 1
                logger.info(
                    f"[RECONCILIATION] Skipped {candidate.user_id}/{candidate.week_key}: {result.action.value}"
                )
                continue

            summary.processed += 1
            if result.action == ReconciliationAction.REFUND:
                summary.refunds_issued += 1
            else:
                summary.charges_issued += 1
            summary.details.append({
                'userId': candidate.user_id,
                'weekStartDate': candidate.week_key,
                'action': result.action.value,
                'amountCents': result.amount_cents,
                'dryRun': dry_run,
            })

        logger.info(
            f"[RECONCILIATION] Completed: {summary.processed} processed, "
            f"{summary.refunds_issued} refunds, {summary.charges_issued} charges, "
            f"{len(summary.failures)} failures"
        )
        return summary

    async def _load_candidates(
        self,
        limit: int,
        week_key: Optional[str],
        user_id: Optional[str]
    ) -> List[ReconciliationCandidate]:
        penalties = await self.repository.list_reconciliation_queue(limit, week_key=week_key, user_id=user_id)
        if not penalties:
            return []

        user_ids = sorted({p.user_id for p in penalties})
        users = await self.repository.list_users(user_ids)
        user_by_id = {u.id: u for u in users}

        # Oldest first, so the latest commitment per (user, week) wins
        commitments = await self.repository.list_commitments_for_users(
            user_ids, sorted({p.week_key for p in penalties})
        )
        commitment_by_key = {(c.user_id, c.week_end_date): c for c in commitments}

        return [
            ReconciliationCandidate(
                penalty=penalty,
                user=user_by_id.get(penalty.user_id),
                commitment=commitment_by_key.get((penalty.user_id, penalty.week_key)),
            )
            for penalty in penalties
        ]

    async def _reconcile_locked(
        self,
        candidate: ReconciliationCandidate,
        dry_run: bool
    ) -> Optional[ReconciliationResult]:
        """Reconcile under the per-(user, week) lock, returning None if the row was already handled."""
        if dry_run:
            return await self.reconcile(candidate, dry_run=True)

        async with self.repository.candidate_lock(candidate.user_id, candidate.week_key) as acquired:
            if not acquired:
                raise ReconciliationError(
                    message="Row is locked by another run",
                    user_id=candidate.user_id,
                    week_key=candidate.week_key,
                )

            current = await self.repository.get_penalty(candidate.user_id, candidate.week_key)
            if current is None or not current.needs_reconciliation:
                logger.info(f"[RECONCILIATION] {candidate.user_id}/{candidate.week_key} already reconciled")
                return None
            candidate.penalty = current
            return await self.reconcile(candidate)

    async def reconcile(self, candidate: ReconciliationCandidate, dry_run: bool = False) -> ReconciliationResult:
        """
        Reconcile one flagged row.

        Raises:
            ProcessorError: Stripe rejected the refund or charge
            ReconciliationError: Stripe succeeded but the row could not be updated
        """
        delta = candidate.delta_cents

        if delta == 0:
            if not dry_run:
                await self.repository.apply_reconciliation(candidate.user_id, candidate.week_key, 0)
            return ReconciliationResult(ReconciliationAction.SKIP_ZERO_DELTA)

        if delta < 0:
            return await self._refund(candidate, abs(delta), dry_run)
        return await self._charge(candidate, delta, dry_run)

    async def _refund(
        self,
        candidate: ReconciliationCandidate,
        amount_cents: int,
        dry_run: bool
    ) -> ReconciliationResult:
        penalty = candidate.penalty
        if not penalty.charge_payment_intent_id:
            return ReconciliationResult(ReconciliationAction.SKIP_MISSING_PAYMENT_INTENT, amount_cents)
        if dry_run:
            return ReconciliationResult(ReconciliationAction.REFUND, amount_cents)

        refund = await self.processor.create_refund(
            payment_intent_id=penalty.charge_payment_intent_id,
            amount_cents=amount_cents,
            idempotency_key=self.idempotency.generate_reconciliation_key(
                candidate.user_id, candidate.week_key, 'refund', penalty.reconciliation_delta_cents,
                penalty.reconciliation_detected_at,
            ),
            metadata={
                'user_id': candidate.user_id,
                'week_start_date': candidate.week_key,
                'reconciliation': REFUND_METADATA_REASON,
            },
        )

        charged = max(0, penalty.charged_amount_cents - amount_cents)
        update_values = PenaltyReconciliation(
            status=SettlementStatus.REFUNDED if charged == 0 else SettlementStatus.REFUNDED_PARTIAL,
            charged_amount_cents=charged,
            refund_amount_cents=penalty.refund_amount_cents + amount_cents,
            refund_id=refund.refund_id,
            refund_issued_at=datetime.now(timezone.utc),
        )
        await self._persist(
            candidate, update_values, refund_payment(candidate, refund, self.currency), refund.refund_id
        )
        logger.info(
            f"[RECONCILIATION] Refunded {amount_cents} cents to {candidate.user_id} "
            f"for {candidate.week_key}: {refund.refund_id}"
        )
        return ReconciliationResult(ReconciliationAction.REFUND, amount_cents)

    async def _charge(
        self,
        candidate: ReconciliationCandidate,
        amount_cents: int,
        dry_run: bool
    ) -> ReconciliationResult:
        penalty = candidate.penalty
        if amount_cents < STRIPE_MINIMUM_CENTS:
            return await self._clear_below_minimum(candidate, amount_cents, dry_run)
        if not candidate.user or not candidate.user.stripe_customer_id:
            return ReconciliationResult(ReconciliationAction.SKIP_MISSING_STRIPE_CUSTOMER, amount_cents)
        if not candidate.commitment or not candidate.commitment.saved_payment_method_id:
            return ReconciliationResult(ReconciliationAction.SKIP_MISSING_PAYMENT_METHOD, amount_cents)
        if dry_run:
            return ReconciliationResult(ReconciliationAction.CHARGE, amount_cents)

        try:
            charge = await self.processor.create_charge(self._charge_request(candidate, amount_cents))
        except BelowMinimumChargeError:
            logger.info(f"[RECONCILIATION] Processor rejected {amount_cents} cents as below minimum")
            return await self._clear_below_minimum(candidate, amount_cents, dry_run)

        payment = adjustment_payment(candidate, charge, self.currency)
        if payment.status in (PaymentStatus.FAILED, PaymentStatus.REQUIRES_ACTION):
            await self._record_failed_charge(candidate, payment)
            raise ProcessorError(
                message=f"payment_intent status {charge.status}",
                payment_intent_id=charge.payment_intent_id,
                retryable=True,
            )

        charged = penalty.charged_amount_cents + amount_cents
        adjusted = penalty.actual_amount_cents is not None and charged == penalty.actual_amount_cents
        update_values = PenaltyReconciliation(
            status=SettlementStatus.CHARGED_ACTUAL_ADJUSTED if adjusted else SettlementStatus.CHARGED_ACTUAL,
            charged_amount_cents=charged,
            refund_amount_cents=penalty.refund_amount_cents,
        )
        await self._persist(candidate, update_values, payment, charge.payment_intent_id)
        logger.info(
            f"[RECONCILIATION] Charged {amount_cents} cents to {candidate.user_id} "
            f"for {candidate.week_key}: {charge.payment_intent_id}"
        )
        return ReconciliationResult(ReconciliationAction.CHARGE, amount_cents)

    def _charge_request(self, candidate: ReconciliationCandidate, amount_cents: int) -> ChargeRequest:
        penalty = candidate.penalty
        return ChargeRequest(
            amount_cents=amount_cents,
            currency=self.currency,
            customer_id=candidate.user.stripe_customer_id,
            payment_method_id=candidate.commitment.saved_payment_method_id,
            description=f"reconciliation {candidate.week_key}",
            idempotency_key=self.idempotency.generate_reconciliation_key(
                candidate.user_id, candidate.week_key, 'charge', penalty.reconciliation_delta_cents,
                penalty.reconciliation_detected_at,
            ),
            metadata={
                'user_id': candidate.user_id,
                'week_start_date': candidate.week_key,
                'reconciliation': RECONCILIATION_REASON_LATE_SYNC,
            },
        )

    async def _clear_below_minimum(
        self,
        candidate: ReconciliationCandidate,
        amount_cents: int,
        dry_run: bool
    ) -> ReconciliationResult:
        """Clear the flag for a top-up the processor cannot charge, leaving the row as settled."""
        if not dry_run:
            await self.repository.apply_reconciliation(candidate.user_id, candidate.week_key, candidate.delta_cents)
            logger.info(
                f"[RECONCILIATION] {candidate.user_id}/{candidate.week_key} delta {amount_cents} cents "
                f"below minimum, cleared without charging"
            )
        return ReconciliationResult(ReconciliationAction.SKIP_BELOW_MINIMUM, amount_cents)

    async def _record_failed_charge(self, candidate: ReconciliationCandidate, payment) -> None:
        logger.warning(
            f"[RECONCILIATION] PaymentIntent {payment.stripe_payment_intent_id} for "
            f"{candidate.user_id}/{candidate.week_key} ended in {payment.status.value}, flag kept"
        )
        try:
            await self.repository.record_payment(payment)
        except Exception as e:
            logger.error(
                f"[RECONCILIATION] Could not record failed PaymentIntent {payment.stripe_payment_intent_id}: {e}"
            )

    async def _persist(self, candidate, update_values, payment, transaction_id: str) -> None:
        """Update the penalty row, then append the ledger entry."""
        try:
            written = await self.repository.apply_reconciliation(
                candidate.user_id,
                candidate.week_key,
                candidate.delta_cents,
                update_values,
            )
            await self.repository.record_payment(payment)
        except Exception as e:
            logger.critical(
                f"[RECONCILIATION] Stripe transaction {transaction_id} for {candidate.user_id}/{candidate.week_key} "
                f"succeeded but was not persisted: {e}"
            )
            raise ReconciliationError(
                message=f"Stripe transaction {transaction_id} succeeded but persistence failed: {e}",
                user_id=candidate.user_id,
                week_key=candidate.week_key,
            ) from e

        if not written:
            logger.critical(
                f"[RECONCILIATION] Stripe transaction {transaction_id} issued but "
                f"{candidate.user_id}/{candidate.week_key} changed underneath the run"
            )
            raise ReconciliationError(
                message=f"Stripe transaction {transaction_id} issued but the row was already reconciled",
                user_id=candidate.user_id,
                week_key=candidate.week_key,
            )
