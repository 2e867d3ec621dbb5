"""
Ingestion & dedup store: the only writer of groups and occurrences.

Senior Engineering Note:
- One short transaction per occurrence: application insert-if-absent,
  group upsert (count + last_seen + reopen in a single statement), optional
  occurrence insert
- No read-modify-write on occurrence_count, so concurrent callers never lose
  increments and never create duplicate groups
- Transient contention is retried with tenacity; nothing ever propagates to
  the monitored application
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy import case, literal, null, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from errorscope.config import Settings
from errorscope.core.fingerprint import FingerprintGenerator
from errorscope.core.ingest_filter import IgnoreFilter, OccurrenceSampler
from errorscope.core.platform_detector import detect_platform
from errorscope.core.sensitive_data import SensitiveDataFilter
from errorscope.core.severity import SeverityClassifier, default_priority
from errorscope.errors import ConcurrencyConflict, InputError
from errorscope.models.application import Application
from errorscope.models.error_group import ErrorGroup, GroupStatus, Severity
from errorscope.models.occurrence import Occurrence
from errorscope.schemas.occurrence import OccurrenceReport
from errorscope.services.event_bus import Event, EventBus, EventType
from errorscope.utils.timeutil import utcnow
from errorscope.utils.upsert import insert_for, is_transient

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 5


@dataclass(frozen=True)
class RecordOutcome:
    """What the upsert did for one occurrence."""

    group_id: UUID
    application_id: UUID
    occurrence_count: int
    created: bool
    reopened: bool
    persisted: bool


class IngestionService:
    """
    Records occurrences under their group.

    record() is the public, never-raising entry point. record_report() is the
    raising variant used by the async worker and by record() itself.
    """

    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus] = None,
        fingerprinter: Optional[FingerprintGenerator] = None,
        sampler: Optional[OccurrenceSampler] = None,
        enqueue: Optional[Callable[[dict], Any]] = None,
    ):
        self.settings = settings
        self.session_maker = session_maker
        self.event_bus = event_bus
        self.fingerprinter = fingerprinter or FingerprintGenerator.from_settings(settings)
        self.ignore_filter = IgnoreFilter(
            settings.ignored_error_types,
            settings.ignored_error_patterns,
        )
        self.severity_classifier = SeverityClassifier(settings.custom_severity_rules)
        self.sensitive_filter = SensitiveDataFilter.from_settings(settings)
        self.sampler = sampler or OccurrenceSampler(settings.sampling_rate)
        self._enqueue = enqueue
        self._application_ids: dict[str, UUID] = {}

    async def record(
        self,
        error_type: str,
        message: str = "",
        origin_location=None,
        context: Optional[dict] = None,
    ) -> Optional[UUID]:
        """
        Record an occurrence. Never raises.

        Returns:
            The group id, or None when the occurrence was ignored, rejected,
            enqueued for async processing or could not be written
        """
        try:
            report = self.validate(error_type, message, origin_location, context)
        except InputError as e:
            logger.warning(f"Rejected occurrence: {e}")
            return None

        try:
            if self.settings.async_ingestion:
                self.enqueue(report)
                return None
            return await self.record_report(report)
        except Exception as e:
            logger.error(
                f"Failed to record occurrence of {report.error_type}: {e}",
                exc_info=True,
                extra={"error_type": report.error_type},
            )
            return None

    def validate(
        self,
        error_type: str,
        message: str = "",
        origin_location=None,
        context: Optional[dict] = None,
    ) -> OccurrenceReport:
        try:
            return OccurrenceReport(
                error_type=error_type,
                message=message,
                origin_location=origin_location,
                context=context or {},
            )
        except ValidationError as e:
            raise InputError(str(e)) from e

    def enqueue(self, report: OccurrenceReport) -> None:
        payload = self.sensitive_filter.scrub(report).model_dump(mode="json")
        if self._enqueue is not None:
            self._enqueue(payload)
            return
        from errorscope.worker.tasks.ingestion import record_occurrence

        record_occurrence.delay(payload)

    async def record_report(self, report: OccurrenceReport) -> Optional[UUID]:
        """
        Apply filters, fingerprint and write. Raises on unrecoverable failure.
        """
        if self.ignore_filter.is_ignored(report.error_type):
            logger.debug(f"Ignored occurrence of {report.error_type}")
            return None

        report = self.sensitive_filter.scrub(report)
        context = report.context
        platform = context.platform or detect_platform(context.request_info.user_agent)
        fingerprint = self.fingerprinter.fingerprint(
            report.error_type,
            report.origin_location,
            context.model_dump(),
            message=report.message,
        )
        severity = self.severity_classifier.classify(report.error_type)
        application_name = context.application or self.settings.default_application_name

        outcome = await self._write(report, application_name, fingerprint, severity, platform)
        await self._publish(outcome, report)
        return outcome.group_id

    @retry(
        retry=retry_if_exception_type(ConcurrencyConflict),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        stop=stop_after_attempt(MAX_WRITE_ATTEMPTS),
        reraise=True,
    )
    async def _write(
        self,
        report: OccurrenceReport,
        application_name: str,
        fingerprint: str,
        severity: Severity,
        platform: str,
    ) -> RecordOutcome:
        async with self.session_maker() as db:
            try:
                application_id = await self._resolve_application(db, application_name)
                row, written_at = await self._upsert_group(
                    db, application_id, fingerprint, report, severity
                )

                created = row.occurrence_count == 1
                # Only the statement that flipped resolved -> reopened stamps its own time
                reopened = not created and row.status_changed_at == written_at

                decision = self.sampler.decide(
                    is_first=created,
                    is_critical=severity == Severity.CRITICAL,
                )
                if decision.persist:
                    db.add(self._build_occurrence(
                        report, row.id, application_id, platform, decision.sample_weight
                    ))
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                if is_transient(e):
                    # Unknown application ids may be stale after a rollback
                    self._application_ids.pop(application_name, None)
                    logger.info(f"Contention recording {fingerprint}, retrying: {e}")
                    raise ConcurrencyConflict(str(e)) from e
                raise

        return RecordOutcome(
            group_id=row.id,
            application_id=application_id,
            occurrence_count=row.occurrence_count,
            created=created,
            reopened=reopened,
            persisted=decision.persist,
        )

    async def _resolve_application(self, db: AsyncSession, name: str) -> UUID:
        """Insert-if-absent then select; safe under concurrent first use of a name."""
        cached = self._application_ids.get(name)
        if cached is not None:
            return cached

        insert = insert_for(db)
        now = utcnow()
        stmt = insert(Application).values(
            id=uuid4(), name=name, created_at=now, updated_at=now
        ).on_conflict_do_nothing(index_elements=[Application.name])
        await db.execute(stmt)

        result = await db.execute(select(Application.id).where(Application.name == name))
        application_id = result.scalar_one()
        self._application_ids[name] = application_id
        return application_id

    async def _upsert_group(
        self,
        db: AsyncSession,
        application_id: UUID,
        fingerprint: str,
        report: OccurrenceReport,
        severity: Severity,
    ):
        """
        Single-statement create-or-increment keyed by (application, fingerprint).

        On conflict: occurrence_count + 1, last_seen = max, and a resolved
        group flips to reopened with reopened_at = this occurrence's time and
        status_changed_at = this call's wall-clock time.

        Returns the RETURNING row and the wall-clock time used by this call.
        """
        insert = insert_for(db)
        occurred_at = report.context.timestamp
        now = utcnow()

        stmt = insert(ErrorGroup).values(
            id=uuid4(),
            application_id=application_id,
            fingerprint=fingerprint,
            error_type=report.error_type,
            message=report.message,
            severity=severity,
            priority_level=default_priority(severity),
            status=GroupStatus.OPEN,
            occurrence_count=1,
            first_seen=occurred_at,
            last_seen=occurred_at,
            status_changed_at=now,
            created_at=now,
            updated_at=now,
        )
        was_resolved = ErrorGroup.status == GroupStatus.RESOLVED
        stmt = stmt.on_conflict_do_update(
            index_elements=[ErrorGroup.application_id, ErrorGroup.fingerprint],
            set_={
                "occurrence_count": ErrorGroup.occurrence_count + 1,
                "last_seen": case(
                    (stmt.excluded.last_seen > ErrorGroup.last_seen, stmt.excluded.last_seen),
                    else_=ErrorGroup.last_seen,
                ),
                "first_seen": case(
                    (stmt.excluded.first_seen < ErrorGroup.first_seen, stmt.excluded.first_seen),
                    else_=ErrorGroup.first_seen,
                ),
                "status": case(
                    (was_resolved, literal(GroupStatus.REOPENED, type_=ErrorGroup.status.type)),
                    else_=ErrorGroup.status,
                ),
                "reopened_at": case(
                    (was_resolved, stmt.excluded.last_seen),
                    else_=ErrorGroup.reopened_at,
                ),
                "resolved_at": case(
                    (was_resolved, null()),
                    else_=ErrorGroup.resolved_at,
                ),
                "status_changed_at": case(
                    (was_resolved, literal(now, type_=ErrorGroup.status_changed_at.type)),
                    else_=ErrorGroup.status_changed_at,
                ),
                "updated_at": now,
            },
        ).returning(
            ErrorGroup.id,
            ErrorGroup.occurrence_count,
            ErrorGroup.status,
            ErrorGroup.reopened_at,
            ErrorGroup.status_changed_at,
        )
        result = await db.execute(stmt)
        return result.one(), now

    def _build_occurrence(
        self,
        report: OccurrenceReport,
        group_id: UUID,
        application_id: UUID,
        platform: str,
        sample_weight: float,
    ) -> Occurrence:
        context = report.context
        return Occurrence(
            group_id=group_id,
            application_id=application_id,
            occurred_at=context.timestamp,
            message=report.message,
            platform=platform,
            app_version=context.release,
            revision=context.revision,
            user_id=context.user_id,
            request_url=context.request_info.url,
            request_method=context.request_info.method,
            request_duration_ms=context.request_info.duration_ms,
            extra=context.extra,
            sample_weight=sample_weight,
        )

    async def _publish(self, outcome: RecordOutcome, report: OccurrenceReport) -> None:
        if self.event_bus is None:
            return
        if outcome.created:
            event_type = EventType.GROUP_CREATED
        elif outcome.reopened:
            event_type = EventType.GROUP_REOPENED
        else:
            event_type = EventType.GROUP_RECURRED
        await self.event_bus.publish(
            Event(
                event_type=event_type,
                application_id=outcome.application_id,
                group_id=outcome.group_id,
                payload={
                    "error_type": report.error_type,
                    "occurrence_count": outcome.occurrence_count,
                },
            )
        )


_ingestion_service: Optional[IngestionService] = None


def get_ingestion_service() -> IngestionService:
    """Process-wide service wired from settings."""
    global _ingestion_service
    if _ingestion_service is None:
        from errorscope.config import get_settings
        from errorscope.database import get_session_maker
        from errorscope.services.event_bus import get_event_bus

        _ingestion_service = IngestionService(
            get_settings(),
            get_session_maker(),
            event_bus=get_event_bus(),
        )
    return _ingestion_service
