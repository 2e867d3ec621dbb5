"""
Celery application configuration for ErrorScope.

Carries the async-ingestion queue and the periodic analytics passes. Beat
handles scheduling so only one scheduler runs even with N API replicas.

Scheduler: redbeat.RedBeatScheduler stores schedule state in Redis, so Beat
survives container restarts without firing all tasks immediately.
"""
import logging

from celery import Celery
from celery.signals import after_setup_logger, after_setup_task_logger
from pythonjsonlogger import jsonlogger

from errorscope.config import get_settings

settings = get_settings()

# Named constants for Beat schedule intervals
CASCADE_DETECTION_INTERVAL_SECONDS: float = settings.cascade_detection_interval_seconds
BASELINE_EVALUATION_INTERVAL_SECONDS: float = settings.baseline_evaluation_interval_seconds
SNOOZE_WAKE_INTERVAL_SECONDS: float = 60.0  # every minute

celery_app = Celery(
    "errorscope",
    broker=str(settings.redis_url),
    backend=str(settings.redis_url),
    include=[
        "errorscope.worker.tasks.ingestion",
        "errorscope.worker.tasks.analytics",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Re-queue task if worker dies mid-execution (at-least-once delivery)
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Hard kill at 120s; soft signal at 90s so tasks can clean up
    task_time_limit=120,
    task_soft_time_limit=90,
    # Analytics passes are slow; keep them off the ingestion queue
    task_routes={
        "errorscope.worker.tasks.ingestion.*": {"queue": "ingestion"},
        "errorscope.worker.tasks.analytics.*": {"queue": "analytics"},
    },
    beat_scheduler="redbeat.RedBeatScheduler",
    redbeat_redis_url=str(settings.redis_url),
    beat_schedule={
        "cascade-detection": {
            "task": "errorscope.worker.tasks.analytics.run_cascade_detection",
            "schedule": CASCADE_DETECTION_INTERVAL_SECONDS,
        },
        "baseline-evaluation": {
            "task": "errorscope.worker.tasks.analytics.run_baseline_evaluation",
            "schedule": BASELINE_EVALUATION_INTERVAL_SECONDS,
        },
        "wake-snoozed-groups": {
            "task": "errorscope.worker.tasks.analytics.wake_snoozed_groups",
            "schedule": SNOOZE_WAKE_INTERVAL_SECONDS,
        },
    },
)


@after_setup_logger.connect
@after_setup_task_logger.connect
def use_json_formatter(logger: logging.Logger, *args, **kwargs) -> None:
    """Worker logs use the same JSON shape as the API."""
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    logger.setLevel(getattr(logging, settings.log_level))
