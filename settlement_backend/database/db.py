import uuid

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, MappedAsDataclass

from settlement_backend.core.conf import settings


class Base(MappedAsDataclass, DeclarativeBase):
    """Declarative base for all settlement tables"""


def create_database_engine(url: str) -> AsyncEngine:
    """
    Create the async database engine

    :param url: SQLAlchemy async database url
    :return:
    """
    return create_async_engine(
        url,
        echo=settings.DATABASE_ECHO,
        future=True,
        pool_size=settings.DATABASE_POOL_SIZE,
        pool_pre_ping=True,
    )


async_engine = create_database_engine(settings.DATABASE_URL)
async_db_session = async_sessionmaker(bind=async_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Session dependency"""
    async with async_db_session() as session:
        yield session


CurrentSession = Annotated[AsyncSession, Depends(get_db)]


def uuid4_str() -> str:
    """Random uuid string"""
    return str(uuid.uuid4())
