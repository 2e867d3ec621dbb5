"""
ErrorGroup model: one row per distinct fingerprint within an application.

Senior Engineering Note:
- (application_id, fingerprint) is unique; ingestion upserts against it
- occurrence_count is exact even when occurrence rows are sampled
- status changes resolved -> reopened inside the same upsert that counts
"""
import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from errorscope.models import Base, TimestampMixin


class GroupStatus(str, enum.Enum):
    """Error group lifecycle states."""

    OPEN = "open"
    REOPENED = "reopened"  # Was resolved, then recurred
    RESOLVED = "resolved"
    SNOOZED = "snoozed"

    @classmethod
    def unresolved(cls) -> tuple["GroupStatus", ...]:
        return (cls.OPEN, cls.REOPENED)


class Severity(str, enum.Enum):
    """Error severity levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ErrorGroup(Base, TimestampMixin):
    """Deduplicated incident group."""

    __tablename__ = "error_groups"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    error_type: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Representative message (first seen)",
    )
    severity: Mapped[Severity] = mapped_column(
        SQLEnum(Severity, native_enum=False, length=20),
        nullable=False,
        default=Severity.MEDIUM,
    )
    priority_level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="0 (low) to 3 (urgent)",
    )
    status: Mapped[GroupStatus] = mapped_column(
        SQLEnum(GroupStatus, native_enum=False, length=20),
        nullable=False,
        default=GroupStatus.OPEN,
    )

    # Triage
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Counters and timeline
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    first_seen: Mapped[datetime] = mapped_column(nullable=False)
    last_seen: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
        comment="Wall-clock time of the last status transition",
    )
    resolved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resolution_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "application_id",
            "fingerprint",
            name="uq_error_groups_application_fingerprint",
        ),
        Index("ix_error_groups_app_last_seen", "application_id", "last_seen"),
        Index("ix_error_groups_app_status", "application_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ErrorGroup(id={self.id}, type={self.error_type}, "
            f"status={self.status}, count={self.occurrence_count})>"
        )
