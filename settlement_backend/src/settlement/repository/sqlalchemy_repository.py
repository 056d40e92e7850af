"""
SQLAlchemy Settlement Repository

PostgreSQL implementation of SettlementRepository.

Status transitions are compare-and-swap updates: settlement only writes
while the row is absent or non-terminal, reconciliation only while the
row is still flagged with the delta it read. The charge-then-persist
sequence additionally runs under a session-level advisory lock keyed by
hashtext('settlement:{user}:{week}').
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set

from sqlalchemy import func, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_backend.src.settlement.domain import (
    SETTLED_STATUSES,
    Commitment,
    EstimatedUsage,
    LateUsageUpdate,
    PaymentRecord,
    PenaltyReconciliation,
    PenaltySettlement,
    SettlementStatus,
    UserAccount,
    UserWeekPenalty,
)
from settlement_backend.src.settlement.model import (
    AppConfig as AppConfigModel,
    Commitment as CommitmentModel,
    DailyUsage as DailyUsageModel,
    Payment as PaymentModel,
    UserAccount as UserAccountModel,
    UserWeekPenalty as PenaltyModel,
    WeeklyPool as WeeklyPoolModel,
)
from .interfaces import SettlementRepository

logger = logging.getLogger(__name__)

_SETTLED_VALUES = [status.value for status in SETTLED_STATUSES]


def _to_commitment(row: CommitmentModel) -> Commitment:
    return Commitment(
        id=str(row.id),
        user_id=str(row.user_id),
        week_end_date=row.week_end_date,
        max_charge_cents=row.max_charge_cents or 0,
        status=row.status,
        created_at=row.created_at,
        week_grace_expires_at=row.week_grace_expires_at,
        saved_payment_method_id=row.saved_payment_method_id,
        limit_minutes=row.limit_minutes or 0,
        penalty_per_minute_cents=row.penalty_per_minute_cents or 0,
        monitoring_status=row.monitoring_status,
        monitoring_revoked_at=row.monitoring_revoked_at,
    )


def _to_penalty(row: PenaltyModel) -> UserWeekPenalty:
    return UserWeekPenalty(
        user_id=str(row.user_id),
        week_key=row.week_start_date,
        total_penalty_cents=row.total_penalty_cents or 0,
        status=SettlementStatus.parse(row.settlement_status),
        charged_amount_cents=row.charged_amount_cents or 0,
        actual_amount_cents=row.actual_amount_cents,
        refund_amount_cents=row.refund_amount_cents or 0,
        charge_payment_intent_id=row.charge_payment_intent_id,
        refund_id=row.refund_id,
        charged_at=row.charged_at,
        refund_issued_at=row.refund_issued_at,
        needs_reconciliation=bool(row.needs_reconciliation),
        reconciliation_delta_cents=row.reconciliation_delta_cents or 0,
        reconciliation_reason=row.reconciliation_reason,
        reconciliation_detected_at=row.reconciliation_detected_at,
        last_error=row.last_error,
    )


def _to_user(row: UserAccountModel) -> UserAccount:
    return UserAccount(
        id=str(row.id),
        email=row.email,
        stripe_customer_id=row.stripe_customer_id,
        has_active_payment_method=bool(row.has_active_payment_method),
    )


class SqlAlchemySettlementRepository(SettlementRepository):
    """
    SettlementRepository backed by an async SQLAlchemy session factory.

    Usage:
        from settlement_backend.database.db import async_db_session

        repository = SqlAlchemySettlementRepository(async_db_session)
        commitments = await repository.list_commitments_for_week('2025-01-13')
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_app_config(self, key: str) -> Optional[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(AppConfigModel.value).where(AppConfigModel.key == key))
            return result.scalar_one_or_none()

    async def list_commitments_for_week(self, week_key: str) -> List[Commitment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CommitmentModel).where(CommitmentModel.week_end_date == week_key)
            )
            return [_to_commitment(row) for row in result.scalars().all()]

    async def list_open_commitments(self, statuses: Sequence[str]) -> List[Commitment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CommitmentModel).where(CommitmentModel.status.in_(list(statuses)))
            )
            return [_to_commitment(row) for row in result.scalars().all()]

    async def get_commitment(self, user_id: str, week_key: str) -> Optional[Commitment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CommitmentModel)
                .where(CommitmentModel.user_id == user_id, CommitmentModel.week_end_date == week_key)
                .order_by(CommitmentModel.created_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
            return _to_commitment(row) if row else None

    async def list_commitments_for_users(
        self,
        user_ids: Sequence[str],
        week_keys: Sequence[str]
    ) -> List[Commitment]:
        if not user_ids or not week_keys:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(CommitmentModel)
                .where(
                    CommitmentModel.user_id.in_(list(user_ids)),
                    CommitmentModel.week_end_date.in_(list(week_keys)),
                )
                .order_by(CommitmentModel.created_at.asc())
            )
            return [_to_commitment(row) for row in result.scalars().all()]

    async def list_penalties(self, week_key: str, user_ids: Sequence[str]) -> List[UserWeekPenalty]:
        if not user_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(PenaltyModel).where(
                    PenaltyModel.week_start_date == week_key,
                    PenaltyModel.user_id.in_(list(user_ids)),
                )
            )
            return [_to_penalty(row) for row in result.scalars().all()]

    async def get_penalty(self, user_id: str, week_key: str) -> Optional[UserWeekPenalty]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PenaltyModel).where(
                    PenaltyModel.user_id == user_id,
                    PenaltyModel.week_start_date == week_key,
                )
            )
            row = result.scalars().first()
            return _to_penalty(row) if row else None

    async def list_users(self, user_ids: Sequence[str]) -> List[UserAccount]:
        if not user_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserAccountModel).where(UserAccountModel.id.in_(list(user_ids)))
            )
            return [_to_user(row) for row in result.scalars().all()]

    async def count_usage_rows(self, commitment_ids: Sequence[str]) -> Dict[str, int]:
        if not commitment_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(DailyUsageModel.commitment_id, func.count(DailyUsageModel.id))
                .where(DailyUsageModel.commitment_id.in_(list(commitment_ids)))
                .group_by(DailyUsageModel.commitment_id)
            )
            return {str(commitment_id): count for commitment_id, count in result.all()}

    async def list_usage_dates(self, commitment_id: str) -> Set[date]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DailyUsageModel.usage_date).where(DailyUsageModel.commitment_id == commitment_id)
            )
            return set(result.scalars().all())

    async def list_reconciliation_queue(
        self,
        limit: int,
        week_key: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[UserWeekPenalty]:
        stmt = select(PenaltyModel).where(PenaltyModel.needs_reconciliation.is_(True))
        if week_key:
            stmt = stmt.where(PenaltyModel.week_start_date == week_key)
        if user_id:
            stmt = stmt.where(PenaltyModel.user_id == user_id)
        stmt = stmt.order_by(PenaltyModel.reconciliation_detected_at.asc().nulls_first()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_penalty(row) for row in result.scalars().all()]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_estimated_usage(self, rows: Sequence[EstimatedUsage]) -> int:
        if not rows:
            return 0
        stmt = (
            pg_insert(DailyUsageModel)
            .values([
                {
                    'user_id': row.user_id,
                    'commitment_id': row.commitment_id,
                    'usage_date': row.usage_date,
                    'used_minutes': row.used_minutes,
                    'limit_minutes': row.limit_minutes,
                    'exceeded_minutes': row.exceeded_minutes,
                    'penalty_cents': row.penalty_cents,
                    'is_estimated': True,
                }
                for row in rows
            ])
            .on_conflict_do_nothing(constraint='uq_daily_usage_commitment_date')
            .returning(DailyUsageModel.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            inserted = len(result.all())
            await session.commit()
            return inserted

    async def add_penalty_total(self, user_id: str, week_key: str, amount_cents: int) -> None:
        stmt = pg_insert(PenaltyModel).values(
            user_id=user_id,
            week_start_date=week_key,
            total_penalty_cents=amount_cents,
            settlement_status=SettlementStatus.PENDING.value,
        )
        stmt = stmt.on_conflict_do_update(
            constraint='uq_user_week_penalty',
            set_={
                'total_penalty_cents': PenaltyModel.total_penalty_cents + amount_cents,
                'updated_at': func.now(),
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def record_payment(self, payment: PaymentRecord) -> None:
        async with self._session_factory() as session:
            session.add(PaymentModel(
                user_id=payment.user_id,
                week_end_date=payment.week_key,
                amount_cents=payment.amount_cents,
                currency=payment.currency,
                payment_type=payment.payment_type.value,
                status=payment.status.value,
                commitment_id=payment.commitment_id,
                stripe_payment_intent_id=payment.stripe_payment_intent_id,
                stripe_charge_id=payment.stripe_charge_id,
                stripe_refund_id=payment.stripe_refund_id,
                related_payment_intent_id=payment.related_payment_intent_id,
                note=payment.note,
            ))
            await session.commit()

    async def settle_penalty(self, user_id: str, week_key: str, settlement: PenaltySettlement) -> bool:
        values = {
            'settlement_status': settlement.status.value,
            'charged_amount_cents': settlement.charged_amount_cents,
            'total_penalty_cents': settlement.total_penalty_cents,
            'actual_amount_cents': settlement.actual_amount_cents,
            'charge_payment_intent_id': settlement.charge_payment_intent_id,
            'charged_at': settlement.charged_at,
            'last_error': settlement.last_error,
        }
        stmt = pg_insert(PenaltyModel).values(user_id=user_id, week_start_date=week_key, **values)
        stmt = stmt.on_conflict_do_update(
            constraint='uq_user_week_penalty',
            set_={**values, 'updated_at': func.now()},
            where=or_(
                PenaltyModel.settlement_status.is_(None),
                PenaltyModel.settlement_status.notin_(_SETTLED_VALUES),
            ),
        ).returning(PenaltyModel.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            written = result.first() is not None
            await session.commit()
            return written

    async def apply_reconciliation(
        self,
        user_id: str,
        week_key: str,
        expected_delta_cents: int,
        update_values: Optional[PenaltyReconciliation] = None
    ) -> bool:
        values = {
            'needs_reconciliation': False,
            'reconciliation_delta_cents': 0,
            'reconciliation_reason': None,
            'updated_at': func.now(),
        }
        if update_values is not None:
            values.update({
                'settlement_status': update_values.status.value,
                'charged_amount_cents': update_values.charged_amount_cents,
                'refund_amount_cents': update_values.refund_amount_cents,
            })
            if update_values.refund_id is not None:
                values['refund_id'] = update_values.refund_id
                values['refund_issued_at'] = update_values.refund_issued_at

        stmt = (
            update(PenaltyModel)
            .where(
                PenaltyModel.user_id == user_id,
                PenaltyModel.week_start_date == week_key,
                PenaltyModel.needs_reconciliation.is_(True),
                PenaltyModel.reconciliation_delta_cents == expected_delta_cents,
            )
            .values(**values)
            .returning(PenaltyModel.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            written = result.first() is not None
            await session.commit()
            return written

    async def update_late_usage(
        self,
        user_id: str,
        week_key: str,
        expected_charged_cents: int,
        update_values: LateUsageUpdate
    ) -> bool:
        stmt = (
            update(PenaltyModel)
            .where(
                PenaltyModel.user_id == user_id,
                PenaltyModel.week_start_date == week_key,
                PenaltyModel.charged_amount_cents == expected_charged_cents,
            )
            .values(
                total_penalty_cents=update_values.total_penalty_cents,
                actual_amount_cents=update_values.actual_amount_cents,
                needs_reconciliation=update_values.needs_reconciliation,
                reconciliation_delta_cents=update_values.reconciliation_delta_cents,
                reconciliation_reason=update_values.reconciliation_reason,
                reconciliation_detected_at=update_values.reconciliation_detected_at,
                updated_at=func.now(),
            )
            .returning(PenaltyModel.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            written = result.first() is not None
            await session.commit()
            return written

    async def close_weekly_pools(self, week_key: str, closed_at: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(WeeklyPoolModel)
                .where(WeeklyPoolModel.week_start_date == week_key, WeeklyPoolModel.status != 'closed')
                .values(status='closed', closed_at=closed_at)
            )
            await session.commit()
            return result.rowcount or 0

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def candidate_lock(self, user_id: str, week_key: str) -> AsyncIterator[bool]:
        lock_key = f"settlement:{user_id}:{week_key}"
        async with self._session_factory() as session:
            result = await session.execute(
                text("SELECT pg_try_advisory_lock(hashtext(:lock_key))"),
                {"lock_key": lock_key}
            )
            acquired = bool(result.scalar())
            if not acquired:
                logger.info(f"[SETTLEMENT] Lock busy for {lock_key}")
            try:
                yield acquired
            finally:
                if acquired:
                    await session.execute(
                        text("SELECT pg_advisory_unlock(hashtext(:lock_key))"),
                        {"lock_key": lock_key}
                    )
