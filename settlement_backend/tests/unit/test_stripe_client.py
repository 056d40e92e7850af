"""
Unit tests for the Stripe wrapper and processor.

Stripe's async API functions are patched, so no network calls are made.
"""

import asyncio
import hashlib
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import stripe

from settlement_backend.core.conf import settings
from settlement_backend.src.settlement.external import ChargeRequest, StripePaymentProcessor
from settlement_backend.src.settlement.external.stripe.client import StripeAPIWrapper, is_below_minimum_error
from settlement_backend.src.settlement.external.stripe.idempotency import StripeIdempotencyManager
from settlement_backend.src.settlement.shared.exceptions import (
    BelowMinimumChargeError,
    ConfigurationError,
    ProcessorError,
)


@pytest.fixture
def stripe_key():
    with patch.object(settings, 'STRIPE_SECRET_KEY', 'sk_test_123'):
        yield


def charge_request(amount_cents=300):
    return ChargeRequest(
        amount_cents=amount_cents,
        currency='usd',
        customer_id='cus_1',
        payment_method_id='pm_card',
        description='week ending 2025-01-13 (actual)',
        idempotency_key='key-1',
        metadata={'user_id': 'user-1'},
    )


class TestErrorClassification:
    """Tests for safe_stripe_call error mapping."""

    @pytest.mark.asyncio
    async def test_card_decline_is_not_retryable(self, stripe_key):
        call = AsyncMock(side_effect=stripe.CardError("Your card was declined.", None, 'card_declined'))

        with pytest.raises(ProcessorError) as exc_info:
            await StripeAPIWrapper.safe_stripe_call(call)

        assert exc_info.value.code == 'CARD_DECLINED'
        assert exc_info.value.retryable is False
        assert not isinstance(exc_info.value, BelowMinimumChargeError)

    @pytest.mark.asyncio
    async def test_amount_too_small_is_below_minimum(self, stripe_key):
        call = AsyncMock(side_effect=stripe.InvalidRequestError(
            "Amount must be at least $0.50 usd", 'amount', code='amount_too_small'
        ))

        with pytest.raises(BelowMinimumChargeError):
            await StripeAPIWrapper.safe_stripe_call(call)

    @pytest.mark.asyncio
    async def test_other_invalid_request(self, stripe_key):
        call = AsyncMock(side_effect=stripe.InvalidRequestError("No such customer: 'cus_x'", 'customer'))

        with pytest.raises(ProcessorError) as exc_info:
            await StripeAPIWrapper.safe_stripe_call(call)

        assert exc_info.value.code == 'INVALID_REQUEST'
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_api_error_is_retryable(self, stripe_key):
        call = AsyncMock(side_effect=stripe.APIError("Internal error"))

        with pytest.raises(ProcessorError) as exc_info:
            await StripeAPIWrapper.safe_stripe_call(call)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, stripe_key):
        async def slow_call():
            await asyncio.sleep(1)

        with patch.object(settings, 'STRIPE_REQUEST_TIMEOUT_SECONDS', 0.01):
            with pytest.raises(ProcessorError) as exc_info:
                await StripeAPIWrapper.safe_stripe_call(slow_call)

        assert exc_info.value.code == 'PROCESSOR_TIMEOUT'
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_missing_key_is_configuration_error(self):
        call = AsyncMock()

        with patch.object(settings, 'STRIPE_SECRET_KEY', ''):
            with pytest.raises(ConfigurationError) as exc_info:
                await StripeAPIWrapper.safe_stripe_call(call)

        assert exc_info.value.missing == ['STRIPE_SECRET_KEY']
        call.assert_not_called()

    def test_below_minimum_message_match(self):
        assert is_below_minimum_error(Exception("Amount must convert to at least 50 cents. $0.40 converts to approximately €0.37."))
        assert not is_below_minimum_error(Exception("Your card has insufficient funds."))


class TestStripePaymentProcessor:
    """Tests for the Stripe-backed processor."""

    @pytest.mark.asyncio
    async def test_create_charge_confirms_off_session(self, stripe_key):
        intent = MagicMock(id='pi_123', status='succeeded', amount=300)
        intent.get.return_value = 'ch_123'
        create = AsyncMock(return_value=intent)

        with patch.object(stripe.PaymentIntent, 'create_async', create):
            charge = await StripePaymentProcessor().create_charge(charge_request())

        assert charge.payment_intent_id == 'pi_123'
        assert charge.charge_id == 'ch_123'
        kwargs = create.call_args.kwargs
        assert kwargs['confirm'] is True
        assert kwargs['off_session'] is True
        assert kwargs['amount'] == 300
        assert kwargs['idempotency_key'] == 'key-1'

    @pytest.mark.asyncio
    async def test_create_refund_against_payment_intent(self, stripe_key):
        refund = MagicMock(id='re_1', status='succeeded', amount=200)
        create = AsyncMock(return_value=refund)

        with patch.object(stripe.Refund, 'create_async', create):
            result = await StripePaymentProcessor().create_refund('pi_original', 200, 'key-2', {'reconciliation': 'late_sync'})

        assert result.refund_id == 're_1'
        assert create.call_args.kwargs['payment_intent'] == 'pi_original'
        assert create.call_args.kwargs['amount'] == 200

    def test_ensure_configured_without_key(self):
        with patch.object(settings, 'STRIPE_SECRET_KEY', ''):
            with pytest.raises(ConfigurationError):
                StripePaymentProcessor().ensure_configured()


class TestIdempotencyKeys:

    def test_settlement_key_is_deterministic(self):
        manager = StripeIdempotencyManager()

        key = manager.generate_settlement_key('user-1', '2025-01-13', 'actual', 300)

        expected = hashlib.sha256(b'settle:user-1:2025-01-13:actual:300').hexdigest()[:40]
        assert key == expected
        assert key == StripeIdempotencyManager().generate_settlement_key('user-1', '2025-01-13', 'actual', 300)

    def test_settlement_key_stable_across_clock_changes(self):
        manager = StripeIdempotencyManager()

        before = manager.generate_settlement_key('user-1', '2025-01-13', 'actual', 500)
        with patch('time.time', return_value=datetime(2030, 1, 1, tzinfo=timezone.utc).timestamp()):
            after = manager.generate_settlement_key('user-1', '2025-01-13', 'actual', 500)

        assert before == after

    def test_settlement_key_changes_with_parameters(self):
        manager = StripeIdempotencyManager()

        key = manager.generate_settlement_key('user-1', '2025-01-13', 'actual', 300)

        assert key != manager.generate_settlement_key('user-1', '2025-01-13', 'actual', 301)
        assert key != manager.generate_settlement_key('user-1', '2025-01-13', 'worst_case', 300)
        assert key != manager.generate_settlement_key('user-2', '2025-01-13', 'actual', 300)

    def test_reconciliation_key_tracks_detection(self):
        manager = StripeIdempotencyManager()
        detected = datetime(2025, 1, 16, 9, 0, tzinfo=timezone.utc)

        key = manager.generate_reconciliation_key('user-1', '2025-01-13', 'refund', -200, detected)

        assert key == manager.generate_reconciliation_key('user-1', '2025-01-13', 'refund', -200, detected)
        assert key != manager.generate_reconciliation_key(
            'user-1', '2025-01-13', 'refund', -200, datetime(2025, 1, 17, 9, 0, tzinfo=timezone.utc)
        )
        assert key != manager.generate_reconciliation_key('user-1', '2025-01-13', 'charge', -200, detected)
