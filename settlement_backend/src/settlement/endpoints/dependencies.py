"""
Endpoint Dependencies

Shared dependencies for settlement API endpoints. Each can be
overridden in tests through app.dependency_overrides.
"""

import logging
from typing import Optional

from fastapi import Depends, Header

from settlement_backend.core.conf import settings
from settlement_backend.database.db import async_db_session
from settlement_backend.src.settlement.engine import AutoSettlementChecker, SettlementService
from settlement_backend.src.settlement.external import PaymentProcessor, stripe_payment_processor
from settlement_backend.src.settlement.reconciliation import ReconciliationWorker
from settlement_backend.src.settlement.repository import SettlementRepository, SqlAlchemySettlementRepository
from settlement_backend.src.settlement.shared.config import MANUAL_TRIGGER_HEADER
from settlement_backend.src.settlement.shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


async def verify_storage_configured() -> None:
    """Fail the request before any work if storage credentials are missing."""
    if not settings.DATABASE_URL:
        logger.error("[SETTLEMENT] DATABASE_URL not configured")
        raise ConfigurationError("DATABASE_URL not configured", missing=['DATABASE_URL'])


def get_repository() -> SettlementRepository:
    return SqlAlchemySettlementRepository(async_db_session)


def get_processor() -> PaymentProcessor:
    return stripe_payment_processor


def get_settlement_service(
    repository: SettlementRepository = Depends(get_repository),
    processor: PaymentProcessor = Depends(get_processor),
) -> SettlementService:
    return SettlementService(repository, processor)


def get_auto_settlement_checker(
    repository: SettlementRepository = Depends(get_repository),
    service: SettlementService = Depends(get_settlement_service),
) -> AutoSettlementChecker:
    return AutoSettlementChecker(repository, service)


def get_reconciliation_worker(
    repository: SettlementRepository = Depends(get_repository),
    processor: PaymentProcessor = Depends(get_processor),
) -> ReconciliationWorker:
    return ReconciliationWorker(repository, processor)


async def is_manual_trigger(
    manual_trigger: Optional[str] = Header(None, alias=MANUAL_TRIGGER_HEADER)
) -> bool:
    """True when the request carries x-manual-trigger: true."""
    return (manual_trigger or '').strip().lower() == 'true'
