"""Penalty ledger and payment ledger models."""

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from settlement_backend.database.db import Base, uuid4_str


class UserWeekPenalty(Base):
    """Per-user, per-week settlement row.

    Created lazily by the first settlement attempt and never deleted.
    """

    __tablename__ = 'user_week_penalties'
    __table_args__ = (sa.UniqueConstraint('user_id', 'week_start_date', name='uq_user_week_penalty'),)

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, init=False, insert_default=uuid4_str)
    user_id: Mapped[str] = mapped_column(sa.String(36), index=True)

    # Week key, kept under its legacy name
    week_start_date: Mapped[str] = mapped_column(sa.String(10), index=True)

    total_penalty_cents: Mapped[int] = mapped_column(sa.Integer, default=0)
    settlement_status: Mapped[str] = mapped_column(sa.String(32), default='pending', index=True)
    charged_amount_cents: Mapped[int] = mapped_column(sa.Integer, default=0)
    actual_amount_cents: Mapped[int | None] = mapped_column(sa.Integer, default=None)
    refund_amount_cents: Mapped[int] = mapped_column(sa.Integer, default=0)
    charge_payment_intent_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    refund_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    charged_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), default=None)
    refund_issued_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), default=None)
    last_error: Mapped[str | None] = mapped_column(sa.Text, default=None)

    needs_reconciliation: Mapped[bool] = mapped_column(sa.Boolean, default=False, index=True)
    reconciliation_delta_cents: Mapped[int] = mapped_column(sa.Integer, default=0)
    reconciliation_reason: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    reconciliation_detected_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), default=None)

    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), init=False, server_default=sa.func.now(), onupdate=sa.func.now()
    )


class Payment(Base):
    """Append-only payment ledger entry (charge, refund or adjustment)."""

    __tablename__ = 'payments'

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, init=False, insert_default=uuid4_str)
    user_id: Mapped[str] = mapped_column(sa.String(36), index=True)
    week_end_date: Mapped[str] = mapped_column(sa.String(10), index=True)
    amount_cents: Mapped[int] = mapped_column(sa.Integer)
    currency: Mapped[str] = mapped_column(sa.String(3))
    payment_type: Mapped[str] = mapped_column(sa.String(32))
    status: Mapped[str] = mapped_column(sa.String(32))
    commitment_id: Mapped[str | None] = mapped_column(sa.String(36), default=None)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(sa.String(255), default=None, index=True)
    stripe_charge_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    stripe_refund_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    related_payment_intent_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    note: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), init=False, server_default=sa.func.now()
    )
