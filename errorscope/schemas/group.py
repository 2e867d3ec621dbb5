"""
Pydantic schemas for ErrorGroup API requests and responses.

Senior Engineering Note:
- Strict validation with type hints
- Separate schemas for filters, workflow commands and responses
- ConfigDict for ORM integration
"""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from errorscope.models.error_group import GroupStatus, Severity

Timeframe = Literal["last_hour", "today", "yesterday", "last_7_days", "last_30_days", "last_90_days"]
GroupSort = Literal["last_seen", "first_seen", "occurrence_count", "priority"]
StatusFilter = Literal["open", "reopened", "resolved", "snoozed", "unresolved"]


class GroupResponse(BaseModel):
    """Schema for error group responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    fingerprint: str
    error_type: str
    message: str
    severity: Severity
    priority_level: int
    status: GroupStatus
    assigned_to: Optional[str] = None
    snoozed_until: Optional[datetime] = None
    occurrence_count: int
    first_seen: datetime
    last_seen: datetime
    resolved_at: Optional[datetime] = None
    reopened_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_comment: Optional[str] = None


class GroupListResponse(BaseModel):
    """Schema for paginated group list."""

    items: list[GroupResponse]
    total: int
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1, le=100)
    pages: int = Field(..., ge=0)


class GroupFilter(BaseModel):
    """listGroups filters. All optional; unset means no restriction."""

    application: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[StatusFilter] = None
    severity: Optional[Severity] = None
    platform: Optional[str] = Field(None, min_length=1, max_length=50)
    timeframe: Optional[Timeframe] = None
    search: Optional[str] = Field(None, min_length=1, max_length=255)
    sort: GroupSort = "last_seen"
    descending: bool = True
    page: int = Field(1, ge=1)
    page_size: int = Field(25, ge=1, le=100)


class ResolveRequest(BaseModel):
    resolved_by: Optional[str] = Field(None, max_length=255)
    comment: Optional[str] = Field(None, max_length=5000)


class SnoozeRequest(BaseModel):
    hours: int = Field(..., ge=1, le=24 * 30)


class AssignRequest(BaseModel):
    assignee: str = Field(..., min_length=1, max_length=255)


class PriorityRequest(BaseModel):
    priority_level: int = Field(..., ge=0, le=3)
