"""
Analytics API: correlation reports, cascades, baseline alerts, platform scores.

Performance Notes:
- Correlation sections run off the event loop under a per-analysis timeout
- A failed correlation section is served from the last good result
- Cascade links and baseline alerts are read from tables kept current by
  the Beat-scheduled worker tasks
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.api.dependencies import (
    get_baseline_service,
    get_cascade_service,
    get_correlation_service,
    get_platform_service,
)
from errorscope.database import get_db
from errorscope.schemas.analytics import (
    BaselineAlertResponse,
    CascadeChain,
    CascadeLinkResponse,
    CorrelationReport,
    PlatformScore,
)
from errorscope.services.baseline_service import BaselineService
from errorscope.services.cascade_service import CascadeService
from errorscope.services.correlation_service import CorrelationService
from errorscope.services.platform_service import PlatformService
from errorscope.utils.timeutil import to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter()


def _window(
    window_start: Optional[datetime],
    window_end: Optional[datetime],
) -> tuple[Optional[datetime], Optional[datetime]]:
    start, end = to_naive_utc(window_start), to_naive_utc(window_end)
    if start and end and start >= end:
        raise HTTPException(status_code=422, detail="window_start must be before window_end")
    return start, end


@router.get("/correlation", response_model=CorrelationReport)
async def get_correlation_report(
    application: str = Query(..., min_length=1, max_length=255),
    window_start: Optional[datetime] = Query(None),
    window_end: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    service: CorrelationService = Depends(get_correlation_service),
):
    """
    Temporal, release, period and user correlation for an application.

    Defaults to the configured trailing window ending now.
    """
    start, end = _window(window_start, window_end)
    return await service.correlation_report(db, application, window_start=start, window_end=end)


@router.get("/cascades", response_model=list[CascadeLinkResponse])
async def list_cascade_links(
    application: str = Query(..., min_length=1, max_length=255),
    min_confidence: Optional[float] = Query(None, ge=0.0, le=1.0),
    db: AsyncSession = Depends(get_db),
    service: CascadeService = Depends(get_cascade_service),
):
    """Stored parent -> child links, highest confidence first."""
    return await service.cascade_links(db, application, min_confidence=min_confidence)


@router.get("/cascades/{group_id}/chain", response_model=CascadeChain)
async def get_cascade_chain(
    group_id: UUID,
    max_depth: Optional[int] = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    service: CascadeService = Depends(get_cascade_service),
):
    return await service.cascade_chain(db, group_id, max_depth=max_depth)


@router.get("/baseline-alerts", response_model=list[BaselineAlertResponse])
async def list_baseline_alerts(
    application: str = Query(..., min_length=1, max_length=255),
    since: Optional[datetime] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    service: BaselineService = Depends(get_baseline_service),
):
    """Spike alerts, newest first."""
    return await service.baseline_alerts(
        db, application, since=to_naive_utc(since), limit=limit
    )


@router.get("/platforms", response_model=dict[str, PlatformScore])
async def get_platform_scores(
    application: str = Query(..., min_length=1, max_length=255),
    window_start: Optional[datetime] = Query(None),
    window_end: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    service: PlatformService = Depends(get_platform_service),
):
    start, end = _window(window_start, window_end)
    return await service.platform_scores(db, application, window_start=start, window_end=end)
