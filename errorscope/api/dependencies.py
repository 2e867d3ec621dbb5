"""
Shared API dependencies: service instances wired from settings.

Senior Engineering Note:
- One instance per process, built lazily on first request
- Tests override these with app.dependency_overrides
"""
import logging
from functools import lru_cache

from errorscope.config import get_settings
from errorscope.services.baseline_service import BaselineService
from errorscope.services.cascade_service import CascadeService
from errorscope.services.correlation_service import CorrelationService
from errorscope.services.event_bus import EventBus, get_event_bus
from errorscope.services.ingestion import IngestionService, get_ingestion_service
from errorscope.services.platform_service import PlatformService
from errorscope.services.report_cache import ReportCache

logger = logging.getLogger(__name__)


@lru_cache
def get_report_cache() -> ReportCache:
    return ReportCache(redis_url=get_settings().redis_url)


@lru_cache
def get_correlation_service() -> CorrelationService:
    return CorrelationService(get_settings(), cache=get_report_cache())


@lru_cache
def get_cascade_service() -> CascadeService:
    return CascadeService(get_settings(), event_bus=get_event_bus())


@lru_cache
def get_baseline_service() -> BaselineService:
    return BaselineService(get_settings(), event_bus=get_event_bus())


@lru_cache
def get_platform_service() -> PlatformService:
    return PlatformService(get_settings())


def get_ingestion() -> IngestionService:
    return get_ingestion_service()


def get_bus() -> EventBus:
    return get_event_bus()
