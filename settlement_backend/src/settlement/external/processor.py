"""
Payment Processor

Narrow processor interface used by the charge executor and the
reconciliation worker, with the Stripe-backed implementation.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

from .stripe.client import StripeAPIWrapper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessorCharge:
    """Result of a create-and-confirm charge."""
    payment_intent_id: str
    status: str
    amount_cents: int
    charge_id: Optional[str] = None


@dataclass(frozen=True)
class ProcessorRefund:
    """Result of a refund."""
    refund_id: str
    status: str
    amount_cents: int


@dataclass(frozen=True)
class ChargeRequest:
    """Parameters of one off-session charge."""
    amount_cents: int
    currency: str
    customer_id: str
    payment_method_id: str
    description: str
    idempotency_key: str
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentProcessor(ABC):
    """Interface for the payment processor consumed by settlement."""

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when credentials are missing."""
        pass

    @abstractmethod
    async def create_charge(self, request: ChargeRequest) -> ProcessorCharge:
        """Create and confirm an off-session charge."""
        pass

    @abstractmethod
    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> ProcessorRefund:
        """Refund part or all of a prior charge."""
        pass


class StripePaymentProcessor(PaymentProcessor):
    """PaymentProcessor backed by StripeAPIWrapper."""

    def ensure_configured(self) -> None:
        StripeAPIWrapper._ensure_stripe_available()

    async def create_charge(self, request: ChargeRequest) -> ProcessorCharge:
        intent = await StripeAPIWrapper.create_payment_intent(
            amount=request.amount_cents,
            currency=request.currency,
            customer=request.customer_id,
            payment_method=request.payment_method_id,
            confirm=True,
            off_session=True,
            description=request.description,
            metadata=request.metadata,
            idempotency_key=request.idempotency_key,
        )
        logger.info(f"[STRIPE CLIENT] PaymentIntent {intent.id} status={intent.status}")
        return ProcessorCharge(
            payment_intent_id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            charge_id=intent.get('latest_charge'),
        )

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> ProcessorRefund:
        refund = await StripeAPIWrapper.create_refund(
            payment_intent=payment_intent_id,
            amount=amount_cents,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
        logger.info(f"[STRIPE CLIENT] Refund {refund.id} status={refund.status}")
        return ProcessorRefund(
            refund_id=refund.id,
            status=refund.status,
            amount_cents=refund.amount,
        )


stripe_payment_processor = StripePaymentProcessor()
