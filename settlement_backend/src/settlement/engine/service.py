"""
Settlement Service

Runs one settlement batch for a week:

1. Resolve the operating mode and the target week
2. Estimate usage for commitments with revoked monitoring
3. Build candidates and decide each one
4. Charge / settle candidates through a bounded worker pool, each
   under a per-(user, week) lock with the terminal-status guard
   re-checked after the lock is taken
5. Close the week's pools and return the summary

One candidate's failure never aborts the batch.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from settlement_backend.core.conf import settings
from settlement_backend.src.settlement.domain import (
    DecisionAction,
    SettlementCandidate,
    SettlementDecision,
    SettlementSummary,
)
from settlement_backend.src.settlement.external import (
    PaymentProcessor,
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)
from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.exceptions import PersistenceAfterChargeError
from settlement_backend.src.settlement.shared.timing import SettlementConfig, resolve_week_target, utc_now
from .candidates import CandidateBuilder
from .decision import decide
from .estimation import UsageEstimator
from .executor import BELOW_MINIMUM_MARKER, ZERO_AMOUNT_MARKER, ChargeExecutor, ExecutionOutcome
from .mode import resolve_settlement_config

logger = logging.getLogger(__name__)

# Outcomes that map one-to-one onto SettlementSummary counters
COUNTED_OUTCOMES = frozenset({
    "already_settled",
    "grace_not_expired",
    "locked",
    "missing_stripe_customer",
    "missing_payment_method",
    "zero_amount",
    "below_minimum",
    "charged_actual",
    "charged_worst_case",
})


class SettlementService:
    """
    Settles one week of commitments.

    Usage:
        service = SettlementService(repository, stripe_payment_processor)
        summary = await service.run(target_week='2025-01-13')
        print(summary.to_dict())
    """

    def __init__(
        self,
        repository: SettlementRepository,
        processor: PaymentProcessor,
        idempotency: StripeIdempotencyManager = stripe_idempotency_manager,
        max_concurrency: Optional[int] = None,
        currency: Optional[str] = None
    ):
        self.repository = repository
        self.processor = processor
        self.builder = CandidateBuilder(repository)
        self.estimator = UsageEstimator(repository)
        self.executor = ChargeExecutor(
            repository,
            processor,
            idempotency,
            currency=currency or settings.SETTLEMENT_CURRENCY,
        )
        self.max_concurrency = max(1, max_concurrency or settings.SETTLEMENT_MAX_CONCURRENCY)

    async def run(
        self,
        target_week: Optional[str] = None,
        config: Optional[SettlementConfig] = None,
        now: Optional[datetime] = None
    ) -> SettlementSummary:
        """
        Run settlement for one week.

        Args:
            target_week: Optional YYYY-MM-DD week key override
            config: Operating mode (resolved from storage when omitted)
            now: Reference time (defaults to the current time)

        Returns:
            SettlementSummary

        Raises:
            ConfigurationError: Processor credentials are missing
            ValueError: target_week is not a valid date
        """
        self.processor.ensure_configured()
        now = now or utc_now()
        config = config or await resolve_settlement_config(self.repository)
        target = resolve_week_target(config, now, target_week)
        week_key = target.week_key

        logger.info(f"[SETTLEMENT] Starting run for week {week_key} (compressed={config.compressed_mode})")
        summary = SettlementSummary(week_end_date=week_key)

        try:
            summary.estimated_rows_inserted = await self.estimator.estimate_revoked_usage(week_key)
        except Exception as e:
            logger.error(f"[SETTLEMENT] Usage estimation failed for week {week_key}: {e}")

        candidates = await self.builder.build(week_key)
        summary.total_commitments = len(candidates)
        for candidate in candidates:
            if candidate.has_synced_usage():
                summary.candidates_with_usage += 1
            else:
                summary.candidates_without_usage += 1

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def worker(candidate: SettlementCandidate) -> Tuple[SettlementCandidate, str, Optional[dict]]:
            async with semaphore:
                return await self._process_candidate(candidate, config, now)

        results = await asyncio.gather(*(worker(c) for c in candidates))
        for candidate, outcome, failure in results:
            self._record(summary, candidate, outcome, failure)

        await self._close_pools(week_key)

        logger.info(
            f"[SETTLEMENT] Week {week_key} done: {summary.charged_actual} actual, "
            f"{summary.charged_worst_case} worst case, {len(summary.charge_failures)} failures"
        )
        return summary

    async def _process_candidate(
        self,
        candidate: SettlementCandidate,
        config: SettlementConfig,
        now: datetime
    ) -> Tuple[SettlementCandidate, str, Optional[dict]]:
        try:
            decision = decide(candidate, config, now)
            if decision.action in (
                DecisionAction.SKIP_ALREADY_SETTLED,
                DecisionAction.SKIP_GRACE_NOT_EXPIRED,
            ):
                return candidate, decision.action.value, None
            if decision.action in (
                DecisionAction.MISSING_STRIPE_CUSTOMER,
                DecisionAction.MISSING_PAYMENT_METHOD,
            ):
                logger.warning(
                    f"[SETTLEMENT] {candidate.user_id}/{candidate.week_key} skipped: {decision.action.value}"
                )
                return candidate, decision.action.value, {
                    'userId': candidate.user_id,
                    'message': decision.action.value,
                }

            async with self.repository.candidate_lock(candidate.user_id, candidate.week_key) as acquired:
                if not acquired:
                    return candidate, 'locked', None

                current = await self.repository.get_penalty(candidate.user_id, candidate.week_key)
                if current is not None and current.status.is_settled():
                    return candidate, DecisionAction.SKIP_ALREADY_SETTLED.value, None

                return await self._execute(candidate, decision)

        except PersistenceAfterChargeError as e:
            return candidate, 'persistence_failed', {
                'userId': candidate.user_id,
                'paymentIntentId': e.transaction_id,
                'message': e.message,
            }
        except Exception as e:
            logger.exception(f"[SETTLEMENT] Unexpected error for {candidate.user_id}/{candidate.week_key}: {e}")
            return candidate, ExecutionOutcome.CHARGE_FAILED.value, {
                'userId': candidate.user_id,
                'message': str(e),
            }

    async def _execute(
        self,
        candidate: SettlementCandidate,
        decision: SettlementDecision
    ) -> Tuple[SettlementCandidate, str, Optional[dict]]:
        if decision.action == DecisionAction.SETTLE_ZERO_AMOUNT:
            result = await self.executor.settle_without_charge(
                candidate, decision.charge_type, decision.actual_amount_cents, ZERO_AMOUNT_MARKER
            )
        elif decision.action == DecisionAction.SETTLE_BELOW_MINIMUM:
            result = await self.executor.settle_without_charge(
                candidate, decision.charge_type, decision.actual_amount_cents, BELOW_MINIMUM_MARKER
            )
        elif decision.action == DecisionAction.CHARGE:
            result = await self.executor.charge(
                candidate, decision.charge_type, decision.amount_cents, decision.actual_amount_cents
            )
        else:
            raise ValueError(f"Unhandled settlement decision: {decision.action}")

        if result.outcome == ExecutionOutcome.CHARGED:
            return candidate, f"charged_{result.charge_type.value}", None
        if result.outcome == ExecutionOutcome.CHARGE_FAILED:
            return candidate, result.outcome.value, {'userId': candidate.user_id, 'message': result.error}
        return candidate, result.outcome.value, None

    def _record(
        self,
        summary: SettlementSummary,
        candidate: SettlementCandidate,
        outcome: str,
        failure: Optional[dict]
    ) -> None:
        if outcome in COUNTED_OUTCOMES:
            setattr(summary, outcome, getattr(summary, outcome) + 1)

        if outcome == 'persistence_failed':
            summary.persistence_failures.append(failure)
        elif failure is not None:
            summary.charge_failures.append(failure)

    async def _close_pools(self, week_key: str) -> None:
        try:
            closed = await self.repository.close_weekly_pools(week_key, datetime.now(timezone.utc))
            if closed:
                logger.info(f"[SETTLEMENT] Closed {closed} weekly pool(s) for {week_key}")
        except Exception as e:
            logger.error(f"[SETTLEMENT] Failed to close weekly pools for {week_key}: {e}")
