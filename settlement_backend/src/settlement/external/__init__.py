"""
External Integrations Module

Integration with the payment processor (Stripe).
"""

from .processor import (
    ChargeRequest,
    PaymentProcessor,
    ProcessorCharge,
    ProcessorRefund,
    StripePaymentProcessor,
    stripe_payment_processor,
)
from .stripe import (
    StripeAPIWrapper,
    StripeIdempotencyManager,
    is_below_minimum_error,
    stripe_idempotency_manager,
)

__all__ = [
    'ChargeRequest',
    'PaymentProcessor',
    'ProcessorCharge',
    'ProcessorRefund',
    'StripePaymentProcessor',
    'stripe_payment_processor',
    'StripeAPIWrapper',
    'StripeIdempotencyManager',
    'is_below_minimum_error',
    'stripe_idempotency_manager',
]
