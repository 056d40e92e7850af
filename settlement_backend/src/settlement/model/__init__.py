"""Settlement models package."""

from settlement_backend.src.settlement.model.account import AppConfig, UserAccount, WeeklyPool
from settlement_backend.src.settlement.model.commitment import Commitment, DailyUsage
from settlement_backend.src.settlement.model.ledger import Payment, UserWeekPenalty

__all__ = ['AppConfig', 'Commitment', 'DailyUsage', 'Payment', 'UserAccount', 'UserWeekPenalty', 'WeeklyPool']
