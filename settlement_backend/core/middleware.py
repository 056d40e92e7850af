import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from settlement_backend.src.settlement.shared.exceptions import ConfigurationError, SettlementError

logger = logging.getLogger(__name__)


async def configuration_exception_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    """Missing credentials fail the whole run before any candidate is processed."""
    logger.error(f"[SETTLEMENT] Configuration error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content=exc.to_dict())


async def settlement_exception_handler(request: Request, exc: SettlementError) -> JSONResponse:
    """Settlement errors that escaped a run."""
    logger.error(f"[SETTLEMENT] {exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content=exc.to_dict())
