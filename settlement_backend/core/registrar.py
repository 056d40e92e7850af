import logging

from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from sqlalchemy import text

from settlement_backend.core.conf import settings
from settlement_backend.core.log import setup_logging
from settlement_backend.core.middleware import configuration_exception_handler, settlement_exception_handler
from settlement_backend.database.db import CurrentSession, async_engine
from settlement_backend.src.settlement.endpoints import settlement_router
from settlement_backend.src.settlement.shared.exceptions import ConfigurationError, SettlementError

logger = logging.getLogger(__name__)

health_router = APIRouter()


@health_router.get('/health')
async def health_check(db: CurrentSession):
    await db.execute(text('SELECT 1'))
    return {'status': 'ok'}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan"""
    logger.info('Settlement service starting')
    yield
    await async_engine.dispose()


def register_app() -> FastAPI:
    """Create the FastAPI application"""
    setup_logging()

    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL,
        openapi_url=settings.FASTAPI_OPENAPI_URL,
        lifespan=lifespan,
    )

    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(SettlementError, settlement_exception_handler)

    app.include_router(health_router)
    app.include_router(settlement_router, prefix=settings.FASTAPI_API_V1_PATH)

    return app
