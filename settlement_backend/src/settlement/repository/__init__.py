"""Data access for the settlement module."""

from .interfaces import SettlementRepository
from .sqlalchemy_repository import SqlAlchemySettlementRepository

__all__ = [
    'SettlementRepository',
    'SqlAlchemySettlementRepository',
]
