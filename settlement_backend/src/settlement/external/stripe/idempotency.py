"""
Stripe Idempotency Key Generation

Generates deterministic idempotency keys for settlement charges and
reconciliation refunds/charges so that two overlapping runs, or a run
retrying after a failed database write, issuing the same logical
operation get the same Stripe result.
"""

import hashlib
import logging
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.

    Keys are:
    - Unique per operation + user + week + parameters
    - Independent of the clock, so a later run replaying a charge that
      already succeeded at Stripe gets the original PaymentIntent back

    Usage:
        key = stripe_idempotency_manager.generate_settlement_key(user_id, week_key, 'actual', 300)
        intent = await StripeAPIWrapper.create_payment_intent(idempotency_key=key, ...)
    """

    def generate_key(self, operation: str, user_id: str, *args, **kwargs) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Operation type (e.g., 'settle', 'reconcile')
            user_id: User identifier
            *args: Additional positional arguments to include in key
            **kwargs: Additional keyword arguments to include in key

        Returns:
            40-character hex idempotency key
        """
        components = [
            operation,
            user_id,
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted(kwargs.items())],
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:40]

    def generate_settlement_key(
        self,
        user_id: str,
        week_key: str,
        charge_type: str,
        amount_cents: int
    ) -> str:
        return self.generate_key('settle', user_id, week_key, charge_type, amount_cents)

    def generate_reconciliation_key(
        self,
        user_id: str,
        week_key: str,
        action: str,
        delta_cents: int,
        detected_at: Optional[datetime] = None
    ) -> str:
        detected = detected_at.isoformat() if detected_at else 'none'
        return self.generate_key('reconcile', user_id, week_key, action, delta_cents, detected)


stripe_idempotency_manager = StripeIdempotencyManager()
