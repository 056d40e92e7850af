"""
Settlement Exceptions

Custom exception classes for settlement and reconciliation errors.
The hierarchy mirrors the four failure classes a run can hit:

    - missing prerequisite (customer, payment method, prior charge)
    - processor rejection (decline, below minimum, timeout)
    - local persistence failure after a successful processor call
    - configuration / credential failure
"""


class SettlementError(Exception):
    """
    Base exception for all settlement errors.

    All settlement exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    def __init__(self, message: str, code: str = "SETTLEMENT_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class MissingPrerequisiteError(SettlementError):
    """
    Raised when a candidate cannot be charged or refunded without
    outside intervention.

    Attributes:
        reason: One of missing_stripe_customer, missing_payment_method,
            missing_payment_intent
    """

    def __init__(self, reason: str, user_id: str = None, week_key: str = None):
        super().__init__(
            message=f"Missing prerequisite: {reason}",
            code="MISSING_PREREQUISITE",
            details={'reason': reason, 'user_id': user_id, 'week_key': week_key}
        )
        self.reason = reason
        self.user_id = user_id
        self.week_key = week_key


class ProcessorError(SettlementError):
    """
    Raised when the payment processor rejects or fails a call.

    Examples:
        - Card declined
        - Request timed out
        - Stripe API error
    """

    def __init__(
        self,
        message: str = "Payment processor error",
        code: str = "PROCESSOR_ERROR",
        payment_intent_id: str = None,
        stripe_error: str = None,
        decline_code: str = None,
        retryable: bool = True
    ):
        details = {'retryable': retryable}
        if payment_intent_id:
            details['payment_intent_id'] = payment_intent_id
        if stripe_error:
            details['stripe_error'] = stripe_error
        if decline_code:
            details['decline_code'] = decline_code

        super().__init__(
            message=message,
            code=code,
            details=details
        )
        self.payment_intent_id = payment_intent_id
        self.stripe_error = stripe_error
        self.decline_code = decline_code
        self.retryable = retryable


class BelowMinimumChargeError(ProcessorError):
    """Raised when the processor refuses an amount below its minimum."""

    def __init__(self, message: str = "Amount below processor minimum", amount_cents: int = None):
        super().__init__(
            message=message,
            code="BELOW_MINIMUM",
            retryable=False
        )
        self.amount_cents = amount_cents
        if amount_cents is not None:
            self.details['amount_cents'] = amount_cents


class PersistenceAfterChargeError(SettlementError):
    """
    Raised when the processor call succeeded but the local write failed.

    The processor transaction must not be retried; the row needs an
    out-of-band audit using the transaction id carried here.
    """

    def __init__(
        self,
        transaction_id: str,
        user_id: str,
        week_key: str,
        amount_cents: int,
        cause: Exception = None
    ):
        super().__init__(
            message=f"Processor transaction {transaction_id} succeeded but local persistence failed: {cause}",
            code="PERSISTENCE_AFTER_CHARGE",
            details={
                'transaction_id': transaction_id,
                'user_id': user_id,
                'week_key': week_key,
                'amount_cents': amount_cents,
            }
        )
        self.transaction_id = transaction_id
        self.user_id = user_id
        self.week_key = week_key
        self.amount_cents = amount_cents
        self.cause = cause


class ReconciliationError(SettlementError):
    """Raised when a reconciliation step fails locally."""

    def __init__(self, message: str = "Reconciliation error", user_id: str = None, week_key: str = None):
        super().__init__(
            message=message,
            code="RECONCILIATION_ERROR",
            details={'user_id': user_id, 'week_key': week_key}
        )
        self.user_id = user_id
        self.week_key = week_key


class ConfigurationError(SettlementError):
    """Raised when processor or storage credentials are missing."""

    def __init__(self, message: str = "Settlement service is not configured", missing: list = None):
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={'missing': missing or []}
        )
        self.missing = missing or []
