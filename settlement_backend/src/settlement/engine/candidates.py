"""
Settlement Candidate Builder

Joins one week key against commitments, penalty rows, users and usage
row counts into a flat list of SettlementCandidate.
"""

import logging
from typing import List

from settlement_backend.src.settlement.domain import SettlementCandidate
from settlement_backend.src.settlement.repository import SettlementRepository

logger = logging.getLogger(__name__)


class CandidateBuilder:
    """Builds settlement candidates for a week key."""

    def __init__(self, repository: SettlementRepository):
        self.repository = repository

    async def build(self, week_key: str) -> List[SettlementCandidate]:
        """
        Build candidates for every commitment of a week.

        Args:
            week_key: Week key (commitments.week_end_date)

        Returns:
            One candidate per commitment. A user without a penalty row
            yet gets penalty=None; a user missing from the users table
            gets user=None.
        """
        commitments = await self.repository.list_commitments_for_week(week_key)
        if not commitments:
            logger.info(f"[SETTLEMENT] No commitments for week {week_key}")
            return []

        user_ids = sorted({c.user_id for c in commitments})
        penalties = await self.repository.list_penalties(week_key, user_ids)
        users = await self.repository.list_users(user_ids)
        usage_counts = await self.repository.count_usage_rows([c.id for c in commitments])

        penalty_by_user = {p.user_id: p for p in penalties}
        user_by_id = {u.id: u for u in users}

        candidates = [
            SettlementCandidate(
                commitment=commitment,
                user=user_by_id.get(commitment.user_id),
                penalty=penalty_by_user.get(commitment.user_id),
                usage_row_count=usage_counts.get(commitment.id, 0),
            )
            for commitment in commitments
        ]
        logger.info(
            f"[SETTLEMENT] Built {len(candidates)} candidates for week {week_key} "
            f"({len(penalties)} penalty rows, {len(users)} users)"
        )
        return candidates
