"""
CascadeLink model: a detected "group A tends to precede group B" relation.

Replaced, not accumulated, on every detection pass that evaluates the pair.
"""
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from errorscope.models import Base


class CascadeLink(Base):
    """Directed parent -> child link between two error groups."""

    __tablename__ = "cascade_links"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_group_id: Mapped[UUID] = mapped_column(
        ForeignKey("error_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    child_group_id: Mapped[UUID] = mapped_column(
        ForeignKey("error_groups.id", ondelete="CASCADE"),
        nullable=False,
    )

    lag_mean_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    lag_variance_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    probability: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Explained child occurrences / parent occurrences",
    )
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    child_occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    detected_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("parent_group_id", "child_group_id", name="uq_cascade_links_pair"),
        CheckConstraint("parent_group_id <> child_group_id", name="ck_cascade_links_not_self"),
        Index("ix_cascade_links_app_confidence", "application_id", "confidence"),
    )
