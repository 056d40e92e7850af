"""
Stripe API Client Wrapper

Provides a timeout-bounded, error-classifying interface to the Stripe API.
All Stripe API calls made by settlement go through this wrapper.

Every call is made once: Stripe's own network retries are disabled and
a failed call is retried only by the next scheduled run.
"""

import asyncio
import logging
from typing import Any, Callable

import stripe

from settlement_backend.core.conf import settings
from settlement_backend.src.settlement.shared.config import BELOW_MINIMUM_MESSAGES
from settlement_backend.src.settlement.shared.exceptions import (
    BelowMinimumChargeError,
    ConfigurationError,
    ProcessorError,
)

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = 0


def is_below_minimum_error(error: Exception) -> bool:
    """Check whether a processor error means the amount is below Stripe's minimum."""
    if getattr(error, 'code', None) == 'amount_too_small':
        return True
    message = str(getattr(error, 'user_message', None) or error).lower()
    return any(marker in message for marker in BELOW_MINIMUM_MESSAGES)


class StripeAPIWrapper:
    """
    Safe wrapper for the Stripe calls settlement needs.

    All methods are async class methods that can be called directly:
        intent = await StripeAPIWrapper.create_payment_intent(amount=500, ...)

    Errors come back as settlement exceptions:
        - BelowMinimumChargeError when Stripe refuses a small amount
        - ProcessorError(retryable=False) for card declines
        - ProcessorError(retryable=True) for timeouts and API failures
    """

    @classmethod
    def _ensure_stripe_available(cls):
        """Raise error if Stripe is not configured."""
        if not settings.STRIPE_SECRET_KEY:
            raise ConfigurationError("STRIPE_SECRET_KEY not configured", missing=['STRIPE_SECRET_KEY'])

    @classmethod
    async def safe_stripe_call(cls, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a Stripe API call with a timeout and error classification.

        Args:
            func: Async Stripe API function
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Result from Stripe API
        """
        cls._ensure_stripe_available()
        timeout = settings.STRIPE_REQUEST_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[STRIPE CLIENT] Call timed out after {timeout}s")
            raise ProcessorError(
                message=f"Stripe call timed out after {timeout}s",
                code="PROCESSOR_TIMEOUT",
                retryable=True
            )
        except stripe.CardError as e:
            error_object = getattr(e, 'error', None)
            decline_code = getattr(error_object, 'decline_code', None) if error_object else None
            intent = getattr(error_object, 'payment_intent', None) if error_object else None
            if is_below_minimum_error(e):
                raise BelowMinimumChargeError(message=str(e.user_message or e))
            logger.info(f"[STRIPE CLIENT] Card declined: {decline_code or e.code}")
            raise ProcessorError(
                message=e.user_message or str(e),
                code="CARD_DECLINED",
                payment_intent_id=intent.get('id') if intent else None,
                stripe_error=e.code,
                decline_code=decline_code,
                retryable=False
            )
        except stripe.InvalidRequestError as e:
            if is_below_minimum_error(e):
                raise BelowMinimumChargeError(message=str(e.user_message or e))
            logger.error(f"[STRIPE CLIENT] Invalid request: {e}")
            raise ProcessorError(
                message=str(e),
                code="INVALID_REQUEST",
                stripe_error=e.code,
                retryable=False
            )
        except stripe.StripeError as e:
            logger.error(f"[STRIPE CLIENT] Stripe API error: {e}")
            raise ProcessorError(
                message=str(e),
                stripe_error=getattr(e, 'code', None),
                retryable=True
            )

    # -------------------------------------------------------------------------
    # Payment Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_payment_intent(cls, **kwargs) -> 'stripe.PaymentIntent':
        """
        Create (and usually confirm) a PaymentIntent.

        Args:
            amount: Amount in cents
            currency: Currency code
            customer: Stripe customer id
            payment_method: Saved payment method id
            confirm / off_session: True for settlement charges
            metadata: Audit metadata
            idempotency_key: Deterministic key for the logical charge

        Returns:
            Stripe PaymentIntent object
        """
        return await cls.safe_stripe_call(stripe.PaymentIntent.create_async, **kwargs)

    @classmethod
    async def create_refund(cls, **kwargs) -> 'stripe.Refund':
        """Create a refund against a PaymentIntent."""
        return await cls.safe_stripe_call(stripe.Refund.create_async, **kwargs)
