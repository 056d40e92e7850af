"""
Auto Settlement Checker

Compressed-mode helper: weeks last minutes, so rather than waiting for
the scheduler, find open commitments whose grace period has expired and
settle each of their weeks right away.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.timing import SettlementConfig, is_grace_period_expired, utc_now
from .mode import resolve_settlement_config
from .service import SettlementService

logger = logging.getLogger(__name__)

OPEN_COMMITMENT_STATUSES = ("active", "pending")


class AutoSettlementChecker:
    """Triggers settlement for expired compressed-mode weeks."""

    def __init__(self, repository: SettlementRepository, settlement_service: SettlementService):
        self.repository = repository
        self.settlement_service = settlement_service

    async def run(self, now: Optional[datetime] = None, config: Optional[SettlementConfig] = None) -> Dict:
        """
        Settle every week key that has an expired open commitment.

        Returns:
            Dict with triggered week keys and one summary per week
        """
        now = now or utc_now()
        config = config or await resolve_settlement_config(self.repository)
        if not config.compressed_mode:
            logger.info("[AUTO SETTLEMENT] Skipped: only runs in testing mode")
            return {'skipped': True, 'reason': 'testing_mode_disabled', 'triggered': [], 'results': []}

        commitments = await self.repository.list_open_commitments(OPEN_COMMITMENT_STATUSES)
        expired_weeks: List[str] = sorted({
            c.week_end_date
            for c in commitments
            if is_grace_period_expired(c.week_end_date, c.created_at, c.week_grace_expires_at, config, now)
        })

        if not expired_weeks:
            logger.info("[AUTO SETTLEMENT] No expired commitments")
            return {'skipped': False, 'triggered': [], 'results': []}

        results = []
        for week_key in expired_weeks:
            logger.info(f"[AUTO SETTLEMENT] Triggering settlement for week {week_key}")
            try:
                summary = await self.settlement_service.run(target_week=week_key, config=config, now=now)
                results.append(summary.to_dict())
            except Exception as e:
                logger.error(f"[AUTO SETTLEMENT] Settlement for week {week_key} failed: {e}")
                results.append({'weekEndDate': week_key, 'error': str(e)})

        return {'skipped': False, 'triggered': expired_weeks, 'results': results}
