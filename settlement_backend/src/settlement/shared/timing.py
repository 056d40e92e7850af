"""
Week and Grace Timing

Computes week boundaries, grace deadlines and week keys for both
operating modes. Every function takes the mode as an explicit
SettlementConfig; nothing here reads settings or the database.

Normal mode:
    deadline = Monday 12:00 America/New_York
    grace    = the following Tuesday 12:00 local (DST safe)
    week key = local calendar date of the deadline (YYYY-MM-DD)

Compressed mode:
    deadline = reference + 3 minutes
    grace    = deadline + 1 minute
    week key = UTC calendar date of the deadline (YYYY-MM-DD)
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import (
    COMPRESSED_GRACE_PERIOD,
    COMPRESSED_WEEK_DURATION,
    DEADLINE_HOUR,
    DEADLINE_WEEKDAY,
    NORMAL_GRACE_PERIOD,
    NORMAL_WEEK_DURATION,
    TIME_ZONE,
)

LOCAL_TZ = ZoneInfo(TIME_ZONE)
WEEK_KEY_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class SettlementConfig:
    """Operating mode threaded through every timing calculation."""
    compressed_mode: bool = False

    @property
    def week_duration(self) -> timedelta:
        return COMPRESSED_WEEK_DURATION if self.compressed_mode else NORMAL_WEEK_DURATION

    @property
    def grace_period(self) -> timedelta:
        return COMPRESSED_GRACE_PERIOD if self.compressed_mode else NORMAL_GRACE_PERIOD


@dataclass(frozen=True)
class WeekTarget:
    """The week a settlement run operates on."""
    week_key: str
    deadline: datetime
    grace_deadline: datetime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Naive timestamps from storage are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _local_deadline(day: date) -> datetime:
    return datetime.combine(day, time(DEADLINE_HOUR), tzinfo=LOCAL_TZ)


def parse_week_key(week_key: str) -> date:
    """Parse a YYYY-MM-DD week key, raising ValueError on anything else."""
    return datetime.strptime(week_key, WEEK_KEY_FORMAT).date()


def format_week_key(deadline: datetime, config: SettlementConfig) -> str:
    """
    Format the canonical week key for a deadline.

    Whatever writes a commitment's week_end_date and whatever queries
    candidates by week key must both go through this function.
    """
    deadline = _aware(deadline)
    if config.compressed_mode:
        return deadline.astimezone(timezone.utc).strftime(WEEK_KEY_FORMAT)
    return deadline.astimezone(LOCAL_TZ).strftime(WEEK_KEY_FORMAT)


def get_next_deadline(config: SettlementConfig, reference: Optional[datetime] = None) -> datetime:
    """
    Deadline of the week a commitment created at `reference` belongs to.

    Normal mode rolls forward to the next Monday 12:00 local. On a Monday
    before noon the deadline is the same day; at or after noon it is the
    following Monday.
    """
    reference = _aware(reference or utc_now())
    if config.compressed_mode:
        return reference + config.week_duration

    local = reference.astimezone(LOCAL_TZ)
    days_ahead = (DEADLINE_WEEKDAY - local.weekday()) % 7
    if days_ahead == 0 and local.time() >= time(DEADLINE_HOUR):
        days_ahead = 7
    return _local_deadline(local.date() + timedelta(days=days_ahead))


def get_grace_deadline(week_deadline: datetime, config: SettlementConfig) -> datetime:
    """
    Grace deadline for a week deadline.

    Normal mode builds the next day's 12:00 from the local calendar date,
    so a DST change between Monday and Tuesday does not shift it by an hour.
    """
    week_deadline = _aware(week_deadline)
    if config.compressed_mode:
        return week_deadline + config.grace_period
    local = week_deadline.astimezone(LOCAL_TZ)
    return _local_deadline(local.date() + timedelta(days=1))


def monday_deadline_for(week_key: str) -> datetime:
    """Monday 12:00 local for a normal-mode week key."""
    return _local_deadline(parse_week_key(week_key))


def most_recent_monday_deadline(reference: Optional[datetime] = None) -> datetime:
    local = _aware(reference or utc_now()).astimezone(LOCAL_TZ)
    days_since_monday = (local.weekday() - DEADLINE_WEEKDAY) % 7
    return _local_deadline(local.date() - timedelta(days=days_since_monday))


def resolve_week_target(
    config: SettlementConfig,
    reference: Optional[datetime] = None,
    override: Optional[str] = None
) -> WeekTarget:
    """
    Resolve which week a settlement run should process.

    Args:
        config: Operating mode
        reference: "Now" for the calculation
        override: Optional YYYY-MM-DD week key, read as a Monday deadline

    Returns:
        WeekTarget with week key, deadline and grace deadline

    Raises:
        ValueError: If the override is not a valid date
    """
    reference = _aware(reference or utc_now())

    if override:
        deadline = monday_deadline_for(override)
        return WeekTarget(
            week_key=parse_week_key(override).strftime(WEEK_KEY_FORMAT),
            deadline=deadline,
            grace_deadline=get_grace_deadline(deadline, config),
        )

    if config.compressed_mode:
        today = reference.astimezone(timezone.utc).date()
        deadline = datetime.combine(today, time(DEADLINE_HOUR), tzinfo=timezone.utc)
        return WeekTarget(
            week_key=format_week_key(deadline, config),
            deadline=deadline,
            grace_deadline=get_grace_deadline(deadline, config),
        )

    deadline = most_recent_monday_deadline(reference)
    return WeekTarget(
        week_key=format_week_key(deadline, config),
        deadline=deadline,
        grace_deadline=get_grace_deadline(deadline, config),
    )


def commitment_grace_deadline(
    week_key: str,
    created_at: Optional[datetime],
    explicit_grace: Optional[datetime],
    config: SettlementConfig
) -> datetime:
    """
    Grace deadline of one commitment.

    An explicit week_grace_expires_at always wins. Compressed-mode
    commitments run from their own creation time; normal-mode ones
    from the Monday deadline their week key names.
    """
    if explicit_grace is not None:
        return _aware(explicit_grace)
    if config.compressed_mode and created_at is not None:
        return _aware(created_at) + config.week_duration + config.grace_period
    return get_grace_deadline(monday_deadline_for(week_key), config)


def is_grace_period_expired(
    week_key: str,
    created_at: Optional[datetime],
    explicit_grace: Optional[datetime],
    config: SettlementConfig,
    now: Optional[datetime] = None
) -> bool:
    deadline = commitment_grace_deadline(week_key, created_at, explicit_grace, config)
    return _aware(now or utc_now()) >= deadline
