"""
Settlement Engine

Candidate building, decision, charge execution and the batch service.

Usage:
    from settlement_backend.src.settlement.engine import SettlementService

    summary = await SettlementService(repository, processor).run()
"""

from .auto_settlement import AutoSettlementChecker
from .candidates import CandidateBuilder
from .decision import charge_amount, decide
from .estimation import UsageEstimator, estimated_days
from .executor import ChargeExecutor, ExecutionOutcome, ExecutionResult
from .mode import resolve_settlement_config
from .service import SettlementService

__all__ = [
    'AutoSettlementChecker',
    'CandidateBuilder',
    'charge_amount',
    'decide',
    'UsageEstimator',
    'estimated_days',
    'ChargeExecutor',
    'ExecutionOutcome',
    'ExecutionResult',
    'resolve_settlement_config',
    'SettlementService',
]
