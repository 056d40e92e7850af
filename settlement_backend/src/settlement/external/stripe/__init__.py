"""
Stripe Integration Module

Usage:
    from settlement_backend.src.settlement.external.stripe import (
        StripeAPIWrapper,
        stripe_idempotency_manager,
    )

    key = stripe_idempotency_manager.generate_settlement_key(user_id, week_key, 'actual', 300)
    intent = await StripeAPIWrapper.create_payment_intent(amount=300, idempotency_key=key, ...)
"""

from .client import (
    StripeAPIWrapper,
    is_below_minimum_error,
)

from .idempotency import (
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)

__all__ = [
    'StripeAPIWrapper',
    'is_below_minimum_error',
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
]
