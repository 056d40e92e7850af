"""
Repository Interfaces

Typed data-access contract for settlement and reconciliation.
Every write that moves a penalty row between statuses is conditional
and reports whether it took effect.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Set

from settlement_backend.src.settlement.domain import (
    Commitment,
    EstimatedUsage,
    LateUsageUpdate,
    PaymentRecord,
    PenaltyReconciliation,
    PenaltySettlement,
    UserAccount,
    UserWeekPenalty,
)


class SettlementRepository(ABC):
    """Storage operations consumed by the settlement engine."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_app_config(self, key: str) -> Optional[str]:
        """Read a runtime config value."""
        pass

    @abstractmethod
    async def list_commitments_for_week(self, week_key: str) -> List[Commitment]:
        """Commitments whose week_end_date equals the week key."""
        pass

    @abstractmethod
    async def list_open_commitments(self, statuses: Sequence[str]) -> List[Commitment]:
        """Commitments in any of the given lifecycle statuses."""
        pass

    @abstractmethod
    async def get_commitment(self, user_id: str, week_key: str) -> Optional[Commitment]:
        pass

    @abstractmethod
    async def list_commitments_for_users(
        self,
        user_ids: Sequence[str],
        week_keys: Sequence[str]
    ) -> List[Commitment]:
        """Commitments of the given users in the given weeks, oldest created first."""
        pass

    @abstractmethod
    async def list_penalties(self, week_key: str, user_ids: Sequence[str]) -> List[UserWeekPenalty]:
        pass

    @abstractmethod
    async def get_penalty(self, user_id: str, week_key: str) -> Optional[UserWeekPenalty]:
        pass

    @abstractmethod
    async def list_users(self, user_ids: Sequence[str]) -> List[UserAccount]:
        pass

    @abstractmethod
    async def count_usage_rows(self, commitment_ids: Sequence[str]) -> Dict[str, int]:
        """Usage row count per commitment id (missing ids mean zero)."""
        pass

    @abstractmethod
    async def list_usage_dates(self, commitment_id: str) -> Set[date]:
        pass

    @abstractmethod
    async def list_reconciliation_queue(
        self,
        limit: int,
        week_key: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[UserWeekPenalty]:
        """Flagged rows, oldest detection first."""
        pass

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_estimated_usage(self, rows: Sequence[EstimatedUsage]) -> int:
        """Insert estimated usage rows, returning how many were inserted."""
        pass

    @abstractmethod
    async def add_penalty_total(self, user_id: str, week_key: str, amount_cents: int) -> None:
        """Add to a row's total penalty, creating the row if needed."""
        pass

    @abstractmethod
    async def record_payment(self, payment: PaymentRecord) -> None:
        """Append a payment ledger entry."""
        pass

    @abstractmethod
    async def settle_penalty(self, user_id: str, week_key: str, settlement: PenaltySettlement) -> bool:
        """
        Upsert a settlement outcome.

        Only applies while the row is absent or non-terminal.

        Returns:
            True if the row was written, False if another run settled it first
        """
        pass

    @abstractmethod
    async def apply_reconciliation(
        self,
        user_id: str,
        week_key: str,
        expected_delta_cents: int,
        update_values: Optional[PenaltyReconciliation] = None
    ) -> bool:
        """
        Clear the reconciliation flag and apply an optional update.

        Only applies while the row is still flagged with the expected delta.

        Returns:
            True if the row was written, False if it changed underneath
        """
        pass

    @abstractmethod
    async def update_late_usage(
        self,
        user_id: str,
        week_key: str,
        expected_charged_cents: int,
        update_values: LateUsageUpdate
    ) -> bool:
        """Record a late usage total while charged_amount_cents is unchanged."""
        pass

    @abstractmethod
    async def close_weekly_pools(self, week_key: str, closed_at: datetime) -> int:
        pass

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @abstractmethod
    def candidate_lock(self, user_id: str, week_key: str) -> AbstractAsyncContextManager:
        """
        Per-(user, week) lock around a charge-then-persist sequence.

        The context manager yields True when the lock was acquired and
        False when another run holds it. It never blocks.
        """
        pass
