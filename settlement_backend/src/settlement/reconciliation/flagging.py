"""
Late Sync Flagging

Called by the usage-ingestion path when a week's usage total changes
after settlement. For a settled row:

    actual_amount_cents        = min(actual_penalty, max_charge_cents)
    reconciliation_delta_cents = actual_amount_cents - charged_amount_cents
    needs_reconciliation       = delta != 0

Unsettled rows only record the new total; settlement will pick it up.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from settlement_backend.src.settlement.domain import LateUsageUpdate
from settlement_backend.src.settlement.repository import SettlementRepository
from settlement_backend.src.settlement.shared.config import RECONCILIATION_REASON_LATE_SYNC
from settlement_backend.src.settlement.shared.exceptions import ReconciliationError
from settlement_backend.src.settlement.shared.timing import utc_now

logger = logging.getLogger(__name__)


async def flag_late_usage(
    repository: SettlementRepository,
    user_id: str,
    week_key: str,
    actual_penalty_cents: int,
    now: Optional[datetime] = None
) -> Dict:
    """
    Record a late usage total and flag the row for reconciliation if needed.

    Args:
        repository: Data access
        user_id: User whose usage changed
        week_key: Week key of the penalty row
        actual_penalty_cents: New usage-derived penalty total

    Returns:
        Dict with settled, flagged and delta_cents

    Raises:
        ReconciliationError: The row changed between read and write
    """
    now = now or utc_now()
    actual_penalty_cents = max(0, actual_penalty_cents)

    penalty = await repository.get_penalty(user_id, week_key)
    if penalty is None:
        await repository.add_penalty_total(user_id, week_key, actual_penalty_cents)
        return {'settled': False, 'flagged': False, 'delta_cents': 0}

    commitment = await repository.get_commitment(user_id, week_key)
    max_charge = commitment.max_charge_cents if commitment else actual_penalty_cents
    capped = min(actual_penalty_cents, max_charge)

    settled = penalty.status.is_settled()
    delta = capped - penalty.charged_amount_cents if settled else 0
    flagged = settled and delta != 0

    update_values = LateUsageUpdate(
        total_penalty_cents=actual_penalty_cents,
        actual_amount_cents=capped,
        needs_reconciliation=flagged,
        reconciliation_delta_cents=delta,
        reconciliation_reason=RECONCILIATION_REASON_LATE_SYNC if flagged else None,
        reconciliation_detected_at=now if flagged else None,
    )
    written = await repository.update_late_usage(user_id, week_key, penalty.charged_amount_cents, update_values)
    if not written:
        raise ReconciliationError(
            message="Penalty row changed while recording late usage",
            user_id=user_id,
            week_key=week_key,
        )

    if flagged:
        logger.info(f"[RECONCILIATION] Flagged {user_id}/{week_key} with delta {delta} cents")
    return {'settled': settled, 'flagged': flagged, 'delta_cents': delta}
