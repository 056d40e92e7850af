"""User projection, weekly pool and runtime config models."""

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from settlement_backend.database.db import Base, uuid4_str


class UserAccount(Base):
    """Billing columns of the users table (owned by the auth subsystem)."""

    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    email: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    stripe_customer_id: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    has_active_payment_method: Mapped[bool] = mapped_column(sa.Boolean, default=False)


class WeeklyPool(Base):
    """Aggregate pool of one week's penalties."""

    __tablename__ = 'weekly_pools'

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, init=False, insert_default=uuid4_str)
    week_start_date: Mapped[str] = mapped_column(sa.String(10), index=True)
    status: Mapped[str] = mapped_column(sa.String(32), default='open')
    closed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), default=None)


class AppConfig(Base):
    """Runtime key/value switches (e.g. testing_mode)."""

    __tablename__ = 'app_config'

    key: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    value: Mapped[str] = mapped_column(sa.Text)
