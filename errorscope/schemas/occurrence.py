"""
Pydantic schemas for occurrence reports.

Senior Engineering Note:
- Validation happens once at the ingestion boundary
- Timestamps are normalised to naive UTC
- The same model is the Celery payload for async ingestion
"""
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from errorscope.utils.timeutil import to_naive_utc, utcnow

MAX_MESSAGE_LENGTH = 10_000


class RequestInfo(BaseModel):
    """Request context captured with the error."""

    url: Optional[str] = Field(None, max_length=4096)
    method: Optional[str] = Field(None, max_length=10)
    duration_ms: Optional[int] = Field(None, ge=0)
    user_agent: Optional[str] = Field(None, max_length=1024)


class OccurrenceContext(BaseModel):
    """Context accompanying an occurrence."""

    application: Optional[str] = Field(None, min_length=1, max_length=255)
    platform: Optional[str] = Field(None, max_length=50)
    release: Optional[str] = Field(None, max_length=100)
    revision: Optional[str] = Field(None, max_length=100)
    user_id: Optional[str] = Field(None, max_length=255)
    timestamp: datetime = Field(default_factory=utcnow)
    request_info: RequestInfo = Field(default_factory=RequestInfo)
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v: Any) -> Any:
        # Capture layers often send integer primary keys
        if isinstance(v, int):
            return str(v)
        return v


class OccurrenceReport(BaseModel):
    """A single error report as received from the capture layer."""

    error_type: str = Field(..., min_length=1, max_length=255)
    message: str = ""
    origin_location: Union[None, str, list[str], list[dict[str, Any]]] = None
    context: OccurrenceContext = Field(default_factory=OccurrenceContext)

    @field_validator("message", mode="before")
    @classmethod
    def truncate_message(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v)[:MAX_MESSAGE_LENGTH]

    @field_validator("error_type")
    @classmethod
    def strip_error_type(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("error_type must not be blank")
        return v


class RecordResponse(BaseModel):
    """Response for the ingestion endpoint."""

    group_id: Optional[str] = None
    accepted: bool = True
