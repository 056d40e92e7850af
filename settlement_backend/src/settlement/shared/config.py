"""
Settlement Configuration

Fixed constants for weekly commitment settlement and reconciliation.

Usage:
    from settlement_backend.src.settlement.shared.config import STRIPE_MINIMUM_CENTS

    if amount_cents < STRIPE_MINIMUM_CENTS:
        ...
"""

from datetime import timedelta


# =============================================================================
# PROCESSOR CONSTANTS
# =============================================================================
# Stripe's literal floor is 50 cents; padded so amounts survive
# conversion into the account's settlement currency.
STRIPE_LITERAL_MINIMUM_CENTS: int = 50
STRIPE_MINIMUM_CENTS: int = 60

BELOW_MINIMUM_MESSAGES: tuple = (
    "amount must convert to at least",
    "below minimum",
    "minimum charge",
)


# =============================================================================
# TIMING CONSTANTS
# =============================================================================
TIME_ZONE: str = "America/New_York"
DEADLINE_HOUR: int = 12
DEADLINE_WEEKDAY: int = 0  # Monday

NORMAL_WEEK_DURATION: timedelta = timedelta(days=7)
NORMAL_GRACE_PERIOD: timedelta = timedelta(hours=24)

# Compressed mode runs a whole week in minutes
COMPRESSED_WEEK_DURATION: timedelta = timedelta(minutes=3)
COMPRESSED_GRACE_PERIOD: timedelta = timedelta(minutes=1)

TESTING_MODE_CONFIG_KEY: str = "testing_mode"
MANUAL_TRIGGER_HEADER: str = "x-manual-trigger"


# =============================================================================
# RECONCILIATION CONSTANTS
# =============================================================================
RECONCILIATION_REASON_LATE_SYNC: str = "late_sync_delta"
REFUND_METADATA_REASON: str = "late_sync"


# =============================================================================
# ESTIMATION CONSTANTS
# =============================================================================
MONITORING_REVOKED: str = "revoked"
# Revoked days are estimated as twice the limit, half of it over the limit
ESTIMATED_USAGE_MULTIPLIER: int = 2
