"""
SQLAlchemy declarative base and shared mixins.

Senior Engineering Note:
- All datetimes are naive UTC (see errorscope.utils.timeutil)
- Import concrete models from their modules; this package only holds the base
"""
from datetime import datetime

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from errorscope.utils.timeutil import utcnow


class Base(DeclarativeBase):
    """Declarative base for all ErrorScope models."""


class TimestampMixin:
    """Adds created_at / updated_at columns maintained by the ORM."""

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
