"""Commitment and daily usage models.

Both tables are written by the commitment and usage-ingestion paths;
settlement reads them and only inserts estimated usage rows.
"""

from datetime import date, datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from settlement_backend.database.db import Base, uuid4_str


class Commitment(Base):
    """One user's usage-limit agreement for one week."""

    __tablename__ = 'commitments'

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, init=False, insert_default=uuid4_str)
    user_id: Mapped[str] = mapped_column(sa.String(36), index=True)

    # Week key: the deadline date, kept under its legacy name
    week_end_date: Mapped[str] = mapped_column(sa.String(10), index=True, comment='Week key (YYYY-MM-DD)')
    max_charge_cents: Mapped[int] = mapped_column(sa.Integer, comment='Pre-authorized maximum charge')
    limit_minutes: Mapped[int] = mapped_column(sa.Integer)
    penalty_per_minute_cents: Mapped[int] = mapped_column(sa.Integer)

    status: Mapped[str] = mapped_column(sa.String(32), default='pending', index=True)
    saved_payment_method_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    week_grace_expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), default=None)
    monitoring_status: Mapped[str | None] = mapped_column(sa.String(32), default=None)
    monitoring_revoked_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), init=False, server_default=sa.func.now()
    )


class DailyUsage(Base):
    """One day of aggregated usage for a commitment."""

    __tablename__ = 'daily_usage'
    __table_args__ = (sa.UniqueConstraint('commitment_id', 'date', name='uq_daily_usage_commitment_date'),)

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, init=False, insert_default=uuid4_str)
    user_id: Mapped[str] = mapped_column(sa.String(36), index=True)
    commitment_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey('commitments.id'), index=True)
    usage_date: Mapped[date] = mapped_column('date', sa.Date)
    used_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    limit_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    exceeded_minutes: Mapped[int] = mapped_column(sa.Integer, default=0)
    penalty_cents: Mapped[int] = mapped_column(sa.Integer, default=0)
    is_estimated: Mapped[bool] = mapped_column(sa.Boolean, default=False)
