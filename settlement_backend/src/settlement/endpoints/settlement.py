"""
Settlement Endpoints

Triggers for the weekly settlement run and the compressed-mode
auto-settlement check.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from settlement_backend.src.settlement.engine import AutoSettlementChecker, SettlementService
from settlement_backend.src.settlement.engine.mode import resolve_settlement_config
from .dependencies import (
    get_auto_settlement_checker,
    get_settlement_service,
    is_manual_trigger,
    verify_storage_configured,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlement", tags=["settlement"], dependencies=[Depends(verify_storage_configured)])


# ============================================================================
# Request Models
# ============================================================================

class RunSettlementRequest(BaseModel):
    """Optional body for a settlement run."""
    model_config = ConfigDict(populate_by_name=True)

    target_week: Optional[str] = Field(
        None,
        alias="targetWeek",
        pattern=r"^\d{4}-\d{2}-\d{2}$",
        description="Week key override (YYYY-MM-DD)"
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/run")
async def run_settlement(
    request: Optional[RunSettlementRequest] = None,
    manual_trigger: bool = Depends(is_manual_trigger),
    service: SettlementService = Depends(get_settlement_service),
) -> Dict:
    """
    Settle one week of commitments.

    In testing mode only manual triggers (x-manual-trigger: true) run;
    scheduled calls are acknowledged and skipped.
    """
    config = await resolve_settlement_config(service.repository)
    if config.compressed_mode and not manual_trigger:
        logger.info("[SETTLEMENT] Testing mode: skipping non-manual trigger")
        return {'skipped': True, 'message': 'Testing mode active: settlement only runs on manual trigger'}

    target_week = request.target_week if request else None
    try:
        summary = await service.run(target_week=target_week, config=config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return summary.to_dict()


@router.post("/auto-check")
async def auto_settlement_check(
    checker: AutoSettlementChecker = Depends(get_auto_settlement_checker),
) -> Dict:
    """Settle expired compressed-mode weeks immediately."""
    return await checker.run()
