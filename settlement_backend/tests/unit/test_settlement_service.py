"""Tests for the settlement batch run.

Tests cover:
- Actual, capped and worst-case charges
- Idempotency across repeated runs
- Grace gating and zero / below-minimum handling
- Processor failures and persistence failures after a charge
- Per-(user, week) locking
- Revoked-monitoring estimation and pool closing
"""

import pytest
from datetime import date, datetime, timezone
from unittest.mock import patch

from settlement_backend.src.settlement.domain import PaymentStatus, PaymentType, SettlementStatus, UserWeekPenalty
from settlement_backend.src.settlement.engine import SettlementService
from settlement_backend.src.settlement.engine.estimation import estimated_days
from settlement_backend.src.settlement.engine.mode import resolve_settlement_config
from settlement_backend.src.settlement.shared.exceptions import (
    BelowMinimumChargeError,
    ConfigurationError,
    ProcessorError,
)
from settlement_backend.src.settlement.shared.timing import SettlementConfig

NORMAL = SettlementConfig()


def seed_user(repository, builders, user_id='user-1', penalty_cents=None, usage_days=0, max_charge=500,
              customer='cus_1', payment_method='pm_card'):
    commitment = repository.add_commitment(
        builders.commitment(user_id=user_id, max_charge_cents=max_charge, payment_method=payment_method)
    )
    repository.add_user(builders.user(user_id=user_id, customer=customer))
    if penalty_cents is not None:
        repository.add_penalty(UserWeekPenalty(user_id=user_id, week_key=builders.week_key,
                                               total_penalty_cents=penalty_cents))
    if usage_days:
        repository.add_usage(commitment.id, *[date(2025, 1, 6 + i) for i in range(usage_days)])
    return commitment


async def run(repository, processor, builders, now=None):
    service = SettlementService(repository, processor, max_concurrency=2, currency='usd')
    return await service.run(target_week=builders.week_key, config=NORMAL, now=now or builders.after_grace)


class TestCharging:
    """Tests for the charge amounts."""

    @pytest.mark.asyncio
    async def test_actual_penalty_under_cap(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=300, usage_days=7)

        summary = await run(repository, processor, builders)

        assert summary.charged_actual == 1
        assert [c.amount_cents for c in processor.charges] == [300]
        penalty = repository.penalties[('user-1', builders.week_key)]
        assert penalty.status == SettlementStatus.CHARGED_ACTUAL
        assert penalty.charged_amount_cents == 300
        assert penalty.charge_payment_intent_id == 'pi_1'
        assert repository.payments[0].payment_type == PaymentType.PENALTY_ACTUAL

    @pytest.mark.asyncio
    async def test_actual_penalty_capped_at_preauthorization(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=300, usage_days=7, max_charge=200)

        await run(repository, processor, builders)

        assert processor.charges[0].amount_cents == 200
        assert repository.penalties[('user-1', builders.week_key)].charged_amount_cents == 200

    @pytest.mark.asyncio
    async def test_unsynced_usage_charges_worst_case(self, repository, processor, builders):
        seed_user(repository, builders)

        summary = await run(repository, processor, builders)

        assert summary.charged_worst_case == 1
        assert summary.candidates_without_usage == 1
        assert processor.charges[0].amount_cents == 500
        assert processor.charges[0].metadata['charge_type'] == 'worst_case'
        penalty = repository.penalties[('user-1', builders.week_key)]
        assert penalty.status == SettlementStatus.CHARGED_WORST_CASE
        assert penalty.actual_amount_cents is None

    @pytest.mark.asyncio
    async def test_charge_never_exceeds_max_for_any_candidate(self, repository, processor, builders):
        for i, (penalty, cap) in enumerate([(100, 500), (900, 500), (5000, 250), (None, 300)]):
            seed_user(repository, builders, user_id=f'user-{i}', penalty_cents=penalty,
                      usage_days=0 if penalty is None else 3, max_charge=cap)

        await run(repository, processor, builders)

        caps = {c.user_id: c.max_charge_cents for c in repository.commitments}
        for (user_id, _), penalty in repository.penalties.items():
            assert penalty.charged_amount_cents <= caps[user_id]


class TestIdempotency:
    """Tests for repeated runs."""

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=300, usage_days=7)

        await run(repository, processor, builders)
        state_after_first = dict(repository.penalties)
        summary = await run(repository, processor, builders)

        assert len(processor.charges) == 1
        assert summary.already_settled == 1
        assert repository.penalties == state_after_first
        assert len(repository.payments) == 1

    @pytest.mark.asyncio
    async def test_locked_candidate_is_skipped(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=300, usage_days=7)
        repository.held_locks.add(('user-1', builders.week_key))

        summary = await run(repository, processor, builders)

        assert summary.locked == 1
        assert processor.charges == []


class TestGatingAndSmallAmounts:
    """Tests for grace gating, zero and below-minimum amounts."""

    @pytest.mark.asyncio
    async def test_grace_not_expired_is_never_charged(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=0, usage_days=7)

        summary = await run(repository, processor, builders, now=builders.before_grace)

        assert summary.grace_not_expired == 1
        assert processor.charges == []
        assert repository.penalties[('user-1', builders.week_key)].status == SettlementStatus.PENDING

    @pytest.mark.asyncio
    async def test_zero_amount_settles_without_processor(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=0, usage_days=7)

        summary = await run(repository, processor, builders)

        assert summary.zero_amount == 1
        assert processor.charges == []
        penalty = repository.penalties[('user-1', builders.week_key)]
        assert penalty.status == SettlementStatus.CHARGED_ACTUAL
        assert penalty.charged_amount_cents == 0
        assert repository.payments[0].status == PaymentStatus.NOT_CHARGED
        assert repository.payments[0].note == 'zero_amount'

    @pytest.mark.asyncio
    async def test_below_minimum_settles_without_processor(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=40, usage_days=1)

        summary = await run(repository, processor, builders)

        assert summary.below_minimum == 1
        assert processor.charges == []
        penalty = repository.penalties[('user-1', builders.week_key)]
        assert penalty.status.is_settled()
        assert penalty.actual_amount_cents == 40

    @pytest.mark.asyncio
    async def test_processor_below_minimum_is_settled_at_zero(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=70, usage_days=1)
        processor.charge_error = BelowMinimumChargeError(amount_cents=70)

        summary = await run(repository, processor, builders)

        assert summary.below_minimum == 1
        assert summary.charge_failures == []
        penalty = repository.penalties[('user-1', builders.week_key)]
        assert penalty.status == SettlementStatus.CHARGED_ACTUAL
        assert penalty.charged_amount_cents == 0


class TestFailures:
    """Tests for failure classes."""

    @pytest.mark.asyncio
    async def test_missing_customer_is_reported_not_charged(self, repository, processor, builders):
        seed_user(repository, builders, customer=None)

        summary = await run(repository, processor, builders)

        assert summary.missing_stripe_customer == 1
        assert summary.charge_failures == [{'userId': 'user-1', 'message': 'missing_stripe_customer'}]
        assert ('user-1', builders.week_key) not in repository.penalties

    @pytest.mark.asyncio
    async def test_missing_payment_method_is_reported(self, repository, processor, builders):
        seed_user(repository, builders, payment_method=None)

        summary = await run(repository, processor, builders)

        assert summary.missing_payment_method == 1
        assert processor.charges == []

    @pytest.mark.asyncio
    async def test_decline_marks_charge_failed_and_next_run_retries(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=300, usage_days=7)
        processor.charge_error = ProcessorError(message="Your card was declined.", retryable=False)

        summary = await run(repository, processor, builders)

        assert summary.charge_failures == [{'userId': 'user-1', 'message': 'Your card was declined.'}]
        assert repository.penalties[('user-1', builders.week_key)].status == SettlementStatus.CHARGE_FAILED

        processor.charge_error = None
        summary = await run(repository, processor, builders)

        assert summary.charged_actual == 1
        assert repository.penalties[('user-1', builders.week_key)].status == SettlementStatus.CHARGED_ACTUAL

    @pytest.mark.asyncio
    async def test_non_succeeded_intent_is_charge_failed(self, repository, processor, builders):
        seed_user(repository, builders, penalty_cents=300, usage_days=7)
        processor.charge_status = 'requires_payment_method'

        summary = await run(repository, processor, builders)

        assert len(summary.charge_failures) == 1
        penalty = repository.penalties[('user-1', builders.week_key)]
        assert penalty.status == SettlementStatus.CHARGE_FAILED
        assert penalty.charged_amount_cents == 0

    @pytest.mark.asyncio
    async def test_persistence_failure_after_charge_is_reported_and_isolated(
        self, repository, processor, builders
    ):
        seed_user(repository, builders, user_id='user-1', penalty_cents=300, usage_days=7)
        seed_user(repository, builders, user_id='user-2', customer=None)
        repository.fail_record_payment = RuntimeError("connection reset")

        summary = await run(repository, processor, builders)

        assert len(processor.charges) == 1
        assert summary.persistence_failures[0]['userId'] == 'user-1'
        assert summary.persistence_failures[0]['paymentIntentId'] == 'pi_1'
        assert summary.missing_stripe_customer == 1

    @pytest.mark.asyncio
    async def test_retry_after_persistence_failure_reuses_idempotency_key(
        self, repository, processor, builders
    ):
        seed_user(repository, builders, penalty_cents=300, usage_days=7)
        repository.fail_record_payment = RuntimeError("connection reset")
        await run(repository, processor, builders)

        repository.fail_record_payment = None
        next_day = builders.after_grace.replace(day=builders.after_grace.day + 1, hour=3)
        await run(repository, processor, builders, now=next_day)

        first, retry = processor.charges
        assert retry.idempotency_key == first.idempotency_key
        assert repository.penalties[('user-1', builders.week_key)].status == SettlementStatus.CHARGED_ACTUAL

    @pytest.mark.asyncio
    async def test_missing_processor_credentials_fail_the_run(self, repository, processor, builders):
        seed_user(repository, builders)

        with patch.object(processor, 'ensure_configured', side_effect=ConfigurationError(missing=['STRIPE_SECRET_KEY'])):
            with pytest.raises(ConfigurationError):
                await run(repository, processor, builders)

        assert processor.charges == []


class TestRunExtras:
    """Tests for estimation, pool closing and mode resolution."""

    @pytest.mark.asyncio
    async def test_revoked_monitoring_days_are_estimated(self, repository, processor, builders):
        commitment = repository.add_commitment(builders.commitment(
            monitoring_status='revoked',
            monitoring_revoked_at=datetime(2025, 1, 10, 15, 0, tzinfo=timezone.utc),
        ))
        repository.add_user(builders.user())
        repository.add_usage(commitment.id, date(2025, 1, 10))

        summary = await run(repository, processor, builders)

        assert summary.estimated_rows_inserted == 2
        assert repository.usage[commitment.id][date(2025, 1, 12)]['estimated'] is True
        assert date(2025, 1, 13) not in repository.usage[commitment.id]
        # Jan 11 and 12 at 60 minutes x 10c, capped at 500
        assert repository.penalties[('user-1', builders.week_key)].total_penalty_cents == 1200
        assert processor.charges[0].amount_cents == 500
        assert processor.charges[0].metadata['charge_type'] == 'actual'

    @pytest.mark.asyncio
    async def test_weekly_pool_is_closed(self, repository, processor, builders):
        repository.pools[builders.week_key] = 'open'

        await run(repository, processor, builders)

        assert repository.pools[builders.week_key] == 'closed'

    @pytest.mark.asyncio
    async def test_app_config_overrides_settings(self, repository):
        repository.app_config['testing_mode'] = 'true'

        config = await resolve_settlement_config(repository)

        assert config.compressed_mode is True

    @pytest.mark.asyncio
    async def test_settings_fallback_when_app_config_missing(self, repository):
        from settlement_backend.core.conf import settings

        with patch.object(settings, 'TESTING_MODE', True):
            config = await resolve_settlement_config(repository)

        assert config.compressed_mode is True


class TestEstimatedDays:
    """Tests for the revoked-day window."""

    def test_deadline_date_is_excluded(self, builders):
        commitment = builders.commitment(
            monitoring_status='revoked',
            monitoring_revoked_at=datetime(2025, 1, 11, 15, 0, tzinfo=timezone.utc),
        )

        rows = estimated_days(commitment, set())

        assert [r.usage_date for r in rows] == [date(2025, 1, 11), date(2025, 1, 12)]
        assert all(r.used_minutes == 120 and r.exceeded_minutes == 60 for r in rows)
        assert all(r.penalty_cents == 600 for r in rows)

    def test_revocation_day_is_the_utc_date(self, builders):
        # 22:00 in New York on Jan 11 is already Jan 12 in UTC
        commitment = builders.commitment(
            monitoring_status='revoked',
            monitoring_revoked_at=datetime(2025, 1, 12, 3, 0, tzinfo=timezone.utc),
        )

        rows = estimated_days(commitment, set())

        assert [r.usage_date for r in rows] == [date(2025, 1, 12)]

    def test_revoked_on_deadline_day_estimates_nothing(self, builders):
        commitment = builders.commitment(
            monitoring_status='revoked',
            monitoring_revoked_at=datetime(2025, 1, 13, 14, 0, tzinfo=timezone.utc),
        )

        assert estimated_days(commitment, set()) == []
