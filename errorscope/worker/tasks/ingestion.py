"""
Async-ingestion drain task.

The API (or an in-process IngestionService with async_ingestion enabled)
enqueues a validated OccurrenceReport as JSON; this task performs the
filter, fingerprint and upsert steps. Safe with many workers: the group
upsert is a single atomic statement.
"""
import asyncio

from celery.utils.log import get_task_logger
from pydantic import ValidationError

from errorscope.config import get_settings
from errorscope.database import close_db, get_session_maker
from errorscope.schemas.occurrence import OccurrenceReport
from errorscope.services.event_bus import get_event_bus
from errorscope.services.ingestion import IngestionService
from errorscope.worker.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="errorscope.worker.tasks.ingestion.record_occurrence")
def record_occurrence(payload: dict) -> dict:
    """
    Record one queued occurrence.

    Malformed payloads are dropped, not retried: a second attempt would fail
    the same way.
    """
    try:
        report = OccurrenceReport.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Dropping malformed occurrence payload: {e}")
        return {"status": "rejected", "message": str(e)}

    try:
        group_id = asyncio.run(_record(report))
    except Exception as e:
        logger.error(f"Occurrence ingestion task failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}

    if group_id is None:
        return {"status": "ignored"}
    return {"status": "ok", "group_id": str(group_id)}


async def _record(report: OccurrenceReport):
    # asyncio.run gives every task a fresh loop; the pool must not outlive it
    try:
        service = IngestionService(get_settings(), get_session_maker(), event_bus=get_event_bus())
        return await service.record_report(report)
    finally:
        await close_db()
