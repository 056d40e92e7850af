"""
Settlement Endpoints Module

Routers:
- settlement: weekly settlement run and auto-check
- reconciliation: reconciliation run and late-sync flagging

Usage:
    from settlement_backend.src.settlement.endpoints import settlement_router

    app.include_router(settlement_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from .settlement import router as settlement_run_router
from .reconciliation import router as reconciliation_router
from .dependencies import (
    get_processor,
    get_repository,
    is_manual_trigger,
    verify_storage_configured,
)

settlement_router = APIRouter()

settlement_router.include_router(settlement_run_router)
settlement_router.include_router(reconciliation_router)

__all__ = [
    'settlement_router',
    'settlement_run_router',
    'reconciliation_router',
    'get_processor',
    'get_repository',
    'is_manual_trigger',
    'verify_storage_configured',
]
