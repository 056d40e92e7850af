"""Payment ledger helpers."""

from .payments import (
    adjustment_payment,
    charge_payment,
    refund_payment,
    unchargeable_payment,
)

__all__ = [
    'adjustment_payment',
    'charge_payment',
    'refund_payment',
    'unchargeable_payment',
]
