"""
Application model: a named tenant whose errors are grouped independently.
"""
from uuid import UUID, uuid4

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from errorscope.models import Base, TimestampMixin


class Application(Base, TimestampMixin):
    """
    Created on first occurrence for a new name; never auto-deleted.

    Group keys are (application_id, fingerprint) so two applications raising
    the same error keep separate groups.
    """

    __tablename__ = "applications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("name", name="uq_applications_name"),
    )
