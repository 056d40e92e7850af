"""Shared fixtures: an in-memory repository and a fake payment processor."""

import itertools

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from settlement_backend.src.settlement.domain import (
    Commitment,
    PenaltySettlement,
    SettlementStatus,
    UserAccount,
    UserWeekPenalty,
)
from settlement_backend.src.settlement.external import PaymentProcessor, ProcessorCharge, ProcessorRefund
from settlement_backend.src.settlement.repository import SettlementRepository


class InMemorySettlementRepository(SettlementRepository):
    """SettlementRepository over plain dicts, with the same conditional-write rules."""

    def __init__(self):
        self.app_config = {}
        self.commitments = []
        self.users = {}
        self.penalties = {}
        self.usage = {}
        self.payments = []
        self.pools = {}
        self.held_locks = set()
        self.fail_record_payment = None

    # Seeding helpers

    def add_commitment(self, commitment):
        self.commitments.append(commitment)
        return commitment

    def add_user(self, user):
        self.users[user.id] = user
        return user

    def add_penalty(self, penalty):
        self.penalties[(penalty.user_id, penalty.week_key)] = penalty
        return penalty

    def add_usage(self, commitment_id, *days):
        self.usage.setdefault(commitment_id, {}).update({d: {'estimated': False} for d in days})

    # Reads

    async def get_app_config(self, key):
        return self.app_config.get(key)

    async def list_commitments_for_week(self, week_key):
        return [c for c in self.commitments if c.week_end_date == week_key]

    async def list_open_commitments(self, statuses):
        return [c for c in self.commitments if c.status in statuses]

    async def get_commitment(self, user_id, week_key):
        for c in self.commitments:
            if c.user_id == user_id and c.week_end_date == week_key:
                return c
        return None

    async def list_commitments_for_users(self, user_ids, week_keys):
        return [c for c in self.commitments if c.user_id in user_ids and c.week_end_date in week_keys]

    async def list_penalties(self, week_key, user_ids):
        return [p for (u, w), p in self.penalties.items() if w == week_key and u in user_ids]

    async def get_penalty(self, user_id, week_key):
        return self.penalties.get((user_id, week_key))

    async def list_users(self, user_ids):
        return [self.users[u] for u in user_ids if u in self.users]

    async def count_usage_rows(self, commitment_ids):
        return {cid: len(self.usage[cid]) for cid in commitment_ids if self.usage.get(cid)}

    async def list_usage_dates(self, commitment_id):
        return set(self.usage.get(commitment_id, {}))

    async def list_reconciliation_queue(self, limit, week_key=None, user_id=None):
        rows = [
            p for p in self.penalties.values()
            if p.needs_reconciliation
            and (week_key is None or p.week_key == week_key)
            and (user_id is None or p.user_id == user_id)
        ]
        rows.sort(key=lambda p: p.reconciliation_detected_at or datetime.min.replace(tzinfo=timezone.utc))
        return rows[:limit]

    # Writes

    async def insert_estimated_usage(self, rows):
        inserted = 0
        for row in rows:
            days = self.usage.setdefault(row.commitment_id, {})
            if row.usage_date not in days:
                days[row.usage_date] = {'estimated': True, 'penalty_cents': row.penalty_cents}
                inserted += 1
        return inserted

    async def add_penalty_total(self, user_id, week_key, amount_cents):
        current = self.penalties.get((user_id, week_key))
        if current is None:
            current = UserWeekPenalty(user_id=user_id, week_key=week_key)
        self.penalties[(user_id, week_key)] = replace(
            current, total_penalty_cents=current.total_penalty_cents + amount_cents
        )

    async def record_payment(self, payment):
        if self.fail_record_payment:
            raise self.fail_record_payment
        self.payments.append(payment)

    async def settle_penalty(self, user_id, week_key, settlement: PenaltySettlement):
        current = self.penalties.get((user_id, week_key))
        if current is not None and current.status.is_settled():
            return False
        current = current or UserWeekPenalty(user_id=user_id, week_key=week_key)
        self.penalties[(user_id, week_key)] = replace(
            current,
            status=settlement.status,
            charged_amount_cents=settlement.charged_amount_cents,
            total_penalty_cents=settlement.total_penalty_cents,
            actual_amount_cents=settlement.actual_amount_cents,
            charge_payment_intent_id=settlement.charge_payment_intent_id,
            charged_at=settlement.charged_at,
            last_error=settlement.last_error,
        )
        return True

    async def apply_reconciliation(self, user_id, week_key, expected_delta_cents, update_values=None):
        current = self.penalties.get((user_id, week_key))
        if current is None or not current.needs_reconciliation:
            return False
        if current.reconciliation_delta_cents != expected_delta_cents:
            return False
        changes = dict(needs_reconciliation=False, reconciliation_delta_cents=0, reconciliation_reason=None)
        if update_values is not None:
            changes.update(
                status=update_values.status,
                charged_amount_cents=update_values.charged_amount_cents,
                refund_amount_cents=update_values.refund_amount_cents,
            )
            if update_values.refund_id is not None:
                changes.update(refund_id=update_values.refund_id, refund_issued_at=update_values.refund_issued_at)
        self.penalties[(user_id, week_key)] = replace(current, **changes)
        return True

    async def update_late_usage(self, user_id, week_key, expected_charged_cents, update_values):
        current = self.penalties.get((user_id, week_key))
        if current is None or current.charged_amount_cents != expected_charged_cents:
            return False
        self.penalties[(user_id, week_key)] = replace(
            current,
            total_penalty_cents=update_values.total_penalty_cents,
            actual_amount_cents=update_values.actual_amount_cents,
            needs_reconciliation=update_values.needs_reconciliation,
            reconciliation_delta_cents=update_values.reconciliation_delta_cents,
            reconciliation_reason=update_values.reconciliation_reason,
            reconciliation_detected_at=update_values.reconciliation_detected_at,
        )
        return True

    async def close_weekly_pools(self, week_key, closed_at):
        if self.pools.get(week_key) == 'open':
            self.pools[week_key] = 'closed'
            return 1
        return 0

    @asynccontextmanager
    async def candidate_lock(self, user_id, week_key):
        key = (user_id, week_key)
        if key in self.held_locks:
            yield False
            return
        self.held_locks.add(key)
        try:
            yield True
        finally:
            self.held_locks.discard(key)


class FakePaymentProcessor(PaymentProcessor):
    """Records every call; raise or change status through attributes."""

    def __init__(self):
        self.charges = []
        self.refunds = []
        self.charge_error = None
        self.refund_error = None
        self.charge_status = 'succeeded'
        self._ids = itertools.count(1)

    async def create_charge(self, request):
        self.charges.append(request)
        if self.charge_error:
            raise self.charge_error
        n = next(self._ids)
        return ProcessorCharge(
            payment_intent_id=f'pi_{n}',
            status=self.charge_status,
            amount_cents=request.amount_cents,
            charge_id=f'ch_{n}',
        )

    async def create_refund(self, payment_intent_id, amount_cents, idempotency_key, metadata=None):
        self.refunds.append({
            'payment_intent_id': payment_intent_id,
            'amount_cents': amount_cents,
            'idempotency_key': idempotency_key,
            'metadata': metadata,
        })
        if self.refund_error:
            raise self.refund_error
        return ProcessorRefund(refund_id=f're_{next(self._ids)}', status='succeeded', amount_cents=amount_cents)


# A Monday 12:00 America/New_York week key, and a time well past its grace deadline
WEEK_KEY = '2025-01-13'
AFTER_GRACE = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
BEFORE_GRACE = datetime(2025, 1, 14, 12, 0, tzinfo=timezone.utc)


def make_commitment(
    user_id='user-1',
    week_key=WEEK_KEY,
    max_charge_cents=500,
    payment_method='pm_card',
    **kwargs
):
    return Commitment(
        id=kwargs.pop('id', f'c-{user_id}'),
        user_id=user_id,
        week_end_date=week_key,
        max_charge_cents=max_charge_cents,
        status=kwargs.pop('status', 'active'),
        created_at=kwargs.pop('created_at', datetime(2025, 1, 6, 15, 0, tzinfo=timezone.utc)),
        saved_payment_method_id=payment_method,
        limit_minutes=kwargs.pop('limit_minutes', 60),
        penalty_per_minute_cents=kwargs.pop('penalty_per_minute_cents', 10),
        **kwargs
    )


def make_user(user_id='user-1', customer='cus_1'):
    return UserAccount(id=user_id, email=f'{user_id}@example.com', stripe_customer_id=customer,
                       has_active_payment_method=customer is not None)


def make_settled_penalty(user_id='user-1', charged=500, status=SettlementStatus.CHARGED_WORST_CASE, **kwargs):
    return UserWeekPenalty(
        user_id=user_id,
        week_key=kwargs.pop('week_key', WEEK_KEY),
        status=status,
        charged_amount_cents=charged,
        charge_payment_intent_id=kwargs.pop('charge_payment_intent_id', 'pi_original'),
        **kwargs
    )


@pytest.fixture
def repository():
    return InMemorySettlementRepository()


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def builders():
    """Entity builders for tests."""
    class Builders:
        commitment = staticmethod(make_commitment)
        user = staticmethod(make_user)
        settled_penalty = staticmethod(make_settled_penalty)
        week_key = WEEK_KEY
        after_grace = AFTER_GRACE
        before_grace = BEFORE_GRACE
    return Builders
