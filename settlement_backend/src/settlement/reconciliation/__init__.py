"""
Reconciliation Module

Late-sync flagging and the worker that refunds or charges the delta.

Usage:
    from settlement_backend.src.settlement.reconciliation import ReconciliationWorker

    summary = await ReconciliationWorker(repository, processor).run(limit=25)
"""

from .flagging import flag_late_usage
from .worker import ReconciliationResult, ReconciliationWorker, clamp_limit

__all__ = [
    'flag_late_usage',
    'ReconciliationResult',
    'ReconciliationWorker',
    'clamp_limit',
]
