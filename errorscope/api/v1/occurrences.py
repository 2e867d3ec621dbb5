"""
Occurrence ingestion endpoint.

Always answers 202: the capture layer must never be affected by a failure
to record, so rejected or failed writes simply come back without a group id.
"""
import logging

from fastapi import APIRouter, Depends

from errorscope.api.dependencies import get_ingestion
from errorscope.schemas.occurrence import OccurrenceReport, RecordResponse
from errorscope.services.ingestion import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=RecordResponse, status_code=202)
async def record_occurrence(
    report: OccurrenceReport,
    service: IngestionService = Depends(get_ingestion),
):
    """Record one error occurrence under its group."""
    group_id = await service.record(
        report.error_type,
        report.message,
        report.origin_location,
        report.context.model_dump(),
    )
    return RecordResponse(group_id=str(group_id) if group_id else None)
