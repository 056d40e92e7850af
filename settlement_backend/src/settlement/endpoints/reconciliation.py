"""
Reconciliation Endpoints

Trigger for the reconciliation worker and the late-sync flagging hook
used by usage ingestion.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from settlement_backend.src.settlement.reconciliation import ReconciliationWorker, flag_late_usage
from settlement_backend.src.settlement.repository import SettlementRepository
from .dependencies import get_reconciliation_worker, get_repository, verify_storage_configured

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reconciliation"], dependencies=[Depends(verify_storage_configured)])


# ============================================================================
# Request Models
# ============================================================================

class RunReconciliationRequest(BaseModel):
    """Optional body for a reconciliation run."""
    model_config = ConfigDict(populate_by_name=True)

    limit: Optional[int] = Field(None, description="Batch size, clamped to [1, max]")
    week: Optional[str] = Field(None, description="Only this week key")
    user_id: Optional[str] = Field(None, alias="userId")
    dry_run: bool = Field(False, alias="dryRun")


class LateSyncRequest(BaseModel):
    """Usage total that arrived after settlement."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    week_key: str = Field(..., alias="weekKey", pattern=r"^\d{4}-\d{2}-\d{2}$")
    actual_penalty_cents: int = Field(..., alias="actualPenaltyCents", ge=0)


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/reconciliation/run")
async def run_reconciliation(
    request: Optional[RunReconciliationRequest] = None,
    worker: ReconciliationWorker = Depends(get_reconciliation_worker),
) -> Dict:
    """Refund or charge the delta of rows flagged needs_reconciliation."""
    request = request or RunReconciliationRequest()
    summary = await worker.run(
        limit=request.limit,
        week_key=request.week,
        user_id=request.user_id,
        dry_run=request.dry_run,
    )
    return summary.to_dict()


@router.post("/usage/late-sync")
async def late_sync(
    request: LateSyncRequest,
    repository: SettlementRepository = Depends(get_repository),
) -> Dict:
    """Record a late usage total and flag the week for reconciliation."""
    result = await flag_late_usage(
        repository,
        user_id=request.user_id,
        week_key=request.week_key,
        actual_penalty_cents=request.actual_penalty_cents,
    )
    return {
        'settled': result['settled'],
        'flagged': result['flagged'],
        'deltaCents': result['delta_cents'],
    }
