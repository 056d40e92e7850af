"""
Revoked Monitoring Estimation

When a user revokes usage monitoring mid-week, the days after the
revocation have no usage data. Before settlement those days are filled
with estimated rows (twice the limit, so the full limit counts as
exceeded) and the penalty total is raised to match.
"""

import logging
from datetime import date, timedelta, timezone
from typing import List

from settlement_backend.src.settlement.domain import Commitment, EstimatedUsage
from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.config import ESTIMATED_USAGE_MULTIPLIER, MONITORING_REVOKED
from settlement_backend.src.settlement.shared.timing import parse_week_key

logger = logging.getLogger(__name__)


def estimated_days(commitment: Commitment, existing: set) -> List[EstimatedUsage]:
    """
    Estimated rows for the revoked days of one commitment.

    Covers each UTC calendar day from the revocation date up to, but not
    including, the deadline date that has no usage row yet.
    """
    if commitment.monitoring_revoked_at is None:
        return []

    start = commitment.monitoring_revoked_at.astimezone(timezone.utc).date()
    end = parse_week_key(commitment.week_end_date)
    limit = max(0, commitment.limit_minutes)

    rows = []
    day: date = start
    while day < end:
        if day not in existing:
            rows.append(EstimatedUsage(
                commitment_id=commitment.id,
                user_id=commitment.user_id,
                usage_date=day,
                used_minutes=limit * ESTIMATED_USAGE_MULTIPLIER,
                limit_minutes=limit,
                exceeded_minutes=limit,
                penalty_cents=limit * max(0, commitment.penalty_per_minute_cents),
            ))
        day += timedelta(days=1)
    return rows


class UsageEstimator:
    """Fills in usage for commitments whose monitoring was revoked."""

    def __init__(self, repository: SettlementRepository):
        self.repository = repository

    async def estimate_revoked_usage(self, week_key: str) -> int:
        """
        Insert estimated usage for revoked commitments of a week.

        Errors are logged per commitment and never abort settlement.

        Returns:
            Number of estimated rows inserted
        """
        commitments = await self.repository.list_commitments_for_week(week_key)
        revoked = [c for c in commitments if c.monitoring_status == MONITORING_REVOKED]
        if not revoked:
            return 0

        logger.info(f"[ESTIMATION] {len(revoked)} revoked commitments for week {week_key}")
        inserted_total = 0
        for commitment in revoked:
            try:
                existing = await self.repository.list_usage_dates(commitment.id)
                rows = estimated_days(commitment, existing)
                if not rows:
                    continue
                inserted = await self.repository.insert_estimated_usage(rows)
                if inserted:
                    # Every estimated day carries the same penalty
                    penalty = inserted * rows[0].penalty_cents
                    await self.repository.add_penalty_total(commitment.user_id, week_key, penalty)
                inserted_total += inserted
                logger.info(f"[ESTIMATION] Inserted {inserted} estimated days for commitment {commitment.id}")
            except Exception as e:
                logger.error(f"[ESTIMATION] Failed for commitment {commitment.id}: {e}")
        return inserted_total
