"""
Baseline models: rolling statistics per (application, scope, granularity)
and the alert events raised against them.

Senior Engineering Note:
- BaselineState.counts holds at most baseline_window_buckets counts
- last_bucket_end only moves forward (guarded upsert in BaselineService)
- BaselineAlert rows are the durable record served by baselineAlerts
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Float, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from errorscope.models import Base, TimestampMixin
from errorscope.utils.timeutil import utcnow

GLOBAL_SCOPE = "global"


def group_scope(group_id) -> str:
    return f"group:{group_id}"


class BaselineState(Base, TimestampMixin):
    """Rolling window of bucketed counts for one baseline key."""

    __tablename__ = "baseline_state"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    scope_key: Mapped[str] = mapped_column(String(100), nullable=False)
    granularity: Mapped[str] = mapped_column(String(10), nullable=False)

    counts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    rolling_mean: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rolling_std: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_bucket_end: Mapped[datetime] = mapped_column(nullable=False)
    last_alert_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "application_id",
            "scope_key",
            "granularity",
            name="uq_baseline_state_key",
        ),
    )


class BaselineAlert(Base):
    """A bucket whose count exceeded mean + k * std for its key."""

    __tablename__ = "baseline_alerts"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    scope_key: Mapped[str] = mapped_column(String(100), nullable=False)
    group_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("error_groups.id", ondelete="CASCADE"),
        nullable=True,
    )
    granularity: Mapped[str] = mapped_column(String(10), nullable=False)
    bucket_start: Mapped[datetime] = mapped_column(nullable=False)
    bucket_end: Mapped[datetime] = mapped_column(nullable=False)

    observed_count: Mapped[float] = mapped_column(Float, nullable=False)
    expected_mean: Mapped[float] = mapped_column(Float, nullable=False)
    std_dev: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    deviation_sigma: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_baseline_alerts_app_bucket", "application_id", "bucket_end"),
    )
