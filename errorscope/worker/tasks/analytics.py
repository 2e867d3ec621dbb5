"""
Celery tasks for the periodic analytics passes.

These are one-shot tasks: Beat fires them on the configured schedule and
each does one pass over every application. A failing application is logged
and skipped; the others still run.
"""
import asyncio
from typing import Any, Awaitable, Callable

from celery.utils.log import get_task_logger
from sqlalchemy import select

from errorscope.config import get_settings
from errorscope.database import close_db, get_db_context
from errorscope.errors import AnalyticsComputationError
from errorscope.models.application import Application
from errorscope.services.analytics_runner import AnalyticsRunner
from errorscope.services.baseline_service import BaselineService
from errorscope.services.cascade_service import CascadeService
from errorscope.services.event_bus import get_event_bus
from errorscope.services.group_workflow import wake_expired_snoozes
from errorscope.worker.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="errorscope.worker.tasks.analytics.run_cascade_detection")
def run_cascade_detection() -> dict:
    """One cascade detection pass per application."""
    try:
        return asyncio.run(_cascade_detection())
    except Exception as e:
        logger.error(f"Cascade detection task failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


@celery_app.task(name="errorscope.worker.tasks.analytics.run_baseline_evaluation")
def run_baseline_evaluation() -> dict:
    """Observe every closed bucket since the last run, per application."""
    try:
        return asyncio.run(_baseline_evaluation())
    except Exception as e:
        logger.error(f"Baseline evaluation task failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


@celery_app.task(name="errorscope.worker.tasks.analytics.wake_snoozed_groups")
def wake_snoozed_groups() -> dict:
    try:
        return asyncio.run(_wake_snoozed_groups())
    except Exception as e:
        logger.error(f"Snooze wake task failed: {e}", exc_info=True)
        return {"status": "error", "message": str(e)}


async def _application_names() -> list[str]:
    async with get_db_context() as db:
        result = await db.execute(select(Application.name).order_by(Application.name))
        return list(result.scalars().all())


async def _per_application(
    name: str,
    step: Callable[[Any, str], Awaitable[Any]],
) -> dict:
    """Run one pass for every application, isolated by the runner's timeout."""
    runner = AnalyticsRunner(get_settings().analytics_timeout_seconds)
    results: dict[str, Any] = {}

    async def run_for(application: str):
        async with get_db_context() as db:
            return await step(db, application)

    for application in await _application_names():
        try:
            summary = await runner.run(f"{name}:{application}", lambda: run_for(application))
        except AnalyticsComputationError as e:
            logger.warning(f"Skipping {application}: {e}")
            results[application] = {"status": "error", "message": str(e)}
            continue
        results[application] = summary.model_dump(mode="json")
    return {"status": "ok", "applications": results}


async def _cascade_detection() -> dict:
    try:
        service = CascadeService(get_settings(), event_bus=get_event_bus())
        return await _per_application("cascade_detection", service.detect_and_store)
    finally:
        await close_db()


async def _baseline_evaluation() -> dict:
    try:
        service = BaselineService(get_settings(), event_bus=get_event_bus())
        return await _per_application("baseline_evaluation", service.evaluate)
    finally:
        await close_db()


async def _wake_snoozed_groups() -> dict:
    try:
        async with get_db_context() as db:
            woken = await wake_expired_snoozes(db)
        return {"status": "ok", "woken": woken}
    finally:
        await close_db()
