"""
Occurrence model: an individual (possibly sampled) error event.

Append-only. sample_weight is the inverse of the sampling probability in
effect when the row was written, so weighted sums estimate true volume.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from errorscope.models import Base
from errorscope.utils.timeutil import utcnow


class Occurrence(Base):
    """Single error event linked to its group."""

    __tablename__ = "occurrences"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    group_id: Mapped[UUID] = mapped_column(
        ForeignKey("error_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Context
    platform: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    app_version: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    revision: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    request_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    request_duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    extra: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    sample_weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_occurrences_app_occurred", "application_id", "occurred_at"),
        Index("ix_occurrences_group_occurred", "group_id", "occurred_at"),
        Index("ix_occurrences_app_platform_occurred", "application_id", "platform", "occurred_at"),
    )
