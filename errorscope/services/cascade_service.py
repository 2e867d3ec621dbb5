"""
Cascade detection runs and cascade queries (cascadeLinks, chains).

Senior Engineering Note:
- A pass evaluates the most active groups of the lookback window
- Accepted links are upserted on (parent, child): recomputed, never accumulated
- Links among the evaluated groups that were not accepted this pass are
  removed in the same transaction
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from errorscope.config import Settings
from errorscope.core.cascade import CascadeDetector, CascadeGraph
from errorscope.errors import ConcurrencyConflict
from errorscope.models.cascade_link import CascadeLink
from errorscope.schemas.analytics import CascadeCandidate, CascadeChain, CascadeRunSummary
from errorscope.services.event_bus import Event, EventBus, EventType
from errorscope.services.group_queries import get_group, resolve_application_id
from errorscope.services.occurrence_queries import fetch_timelines, most_active_groups
from errorscope.utils.timeutil import utcnow
from errorscope.utils.upsert import insert_for, is_transient

logger = logging.getLogger(__name__)


class CascadeService:
    """Persists detector output and answers cascade queries."""

    def __init__(
        self,
        settings: Settings,
        detector: Optional[CascadeDetector] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.settings = settings
        self.detector = detector or CascadeDetector.from_settings(settings)
        self.event_bus = event_bus

    async def detect_and_store(
        self,
        db: AsyncSession,
        application: str,
        now: Optional[datetime] = None,
    ) -> CascadeRunSummary:
        """
        Run one detection pass for an application.

        Raises:
            NotFoundError: unknown application
        """
        application_id = await resolve_application_id(db, application)
        end = now or utcnow()
        start = end - timedelta(hours=self.settings.cascade_lookback_hours)

        group_ids = await most_active_groups(
            db, application_id, start, end, self.settings.cascade_max_groups
        )
        timelines = await fetch_timelines(db, application_id, group_ids, start, end)
        # End the read transaction before the CPU-bound pass
        await db.commit()

        candidates = await asyncio.to_thread(self.detector.detect, timelines)
        accepted = [c for c in candidates if c.accepted]

        stored, removed, new_pairs = await self._replace_links(
            db, application_id, group_ids, accepted, end
        )
        logger.info(
            f"Cascade pass for {application}: {len(group_ids)} groups, "
            f"{len(candidates)} candidate pairs, {stored} links stored, {removed} removed"
        )

        if self.event_bus is not None:
            for candidate in accepted:
                if (candidate.parent_group_id, candidate.child_group_id) in new_pairs:
                    await self.event_bus.publish(
                        Event(
                            EventType.CASCADE_DETECTED,
                            application_id=application_id,
                            group_id=candidate.child_group_id,
                            payload={
                                "parent_group_id": str(candidate.parent_group_id),
                                "confidence": candidate.confidence,
                                "lag_mean_seconds": candidate.lag_mean_seconds,
                            },
                        )
                    )

        return CascadeRunSummary(
            application=application,
            groups_evaluated=len(timelines),
            pairs_evaluated=len(candidates),
            links_stored=stored,
            links_removed=removed,
        )

    @retry(
        retry=retry_if_exception_type(ConcurrencyConflict),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _replace_links(
        self,
        db: AsyncSession,
        application_id: UUID,
        group_ids: list[UUID],
        accepted: list[CascadeCandidate],
        detected_at: datetime,
    ) -> tuple[int, int, set[tuple[UUID, UUID]]]:
        accepted_pairs = {(c.parent_group_id, c.child_group_id) for c in accepted}
        try:
            existing = {}
            if group_ids:
                rows = await db.execute(
                    select(CascadeLink.id, CascadeLink.parent_group_id, CascadeLink.child_group_id)
                    .where(CascadeLink.application_id == application_id)
                    .where(CascadeLink.parent_group_id.in_(group_ids))
                    .where(CascadeLink.child_group_id.in_(group_ids))
                )
                existing = {(r.parent_group_id, r.child_group_id): r.id for r in rows.all()}

            stale_ids = [link_id for pair, link_id in existing.items() if pair not in accepted_pairs]
            if stale_ids:
                await db.execute(delete(CascadeLink).where(CascadeLink.id.in_(stale_ids)))

            insert = insert_for(db)
            for candidate in accepted:
                values = {
                    "lag_mean_seconds": candidate.lag_mean_seconds,
                    "lag_variance_seconds": candidate.lag_variance_seconds,
                    "confidence": candidate.confidence,
                    "probability": candidate.probability,
                    "sample_count": candidate.sample_count,
                    "parent_occurrences": candidate.parent_occurrences,
                    "child_occurrences": candidate.child_occurrences,
                    "detected_at": detected_at,
                }
                stmt = insert(CascadeLink).values(
                    id=uuid4(),
                    application_id=application_id,
                    parent_group_id=candidate.parent_group_id,
                    child_group_id=candidate.child_group_id,
                    **values,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[CascadeLink.parent_group_id, CascadeLink.child_group_id],
                    set_=values,
                )
                await db.execute(stmt)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            if is_transient(e):
                raise ConcurrencyConflict(str(e)) from e
            raise

        return len(accepted), len(stale_ids), accepted_pairs - existing.keys()

    async def cascade_links(
        self,
        db: AsyncSession,
        application: str,
        min_confidence: Optional[float] = None,
    ) -> list[CascadeLink]:
        """Stored links for an application, highest confidence first."""
        application_id = await resolve_application_id(db, application)
        threshold = self.settings.cascade_min_confidence if min_confidence is None else min_confidence
        stmt = (
            select(CascadeLink)
            .where(CascadeLink.application_id == application_id)
            .where(CascadeLink.confidence >= threshold)
            .order_by(desc(CascadeLink.confidence), desc(CascadeLink.sample_count))
        )
        return list((await db.execute(stmt)).scalars().all())

    async def cascade_chain(
        self,
        db: AsyncSession,
        group_id: UUID,
        max_depth: Optional[int] = None,
    ) -> CascadeChain:
        """
        Ancestors and descendants of a group.

        Raises:
            NotFoundError: unknown group
        """
        group = await get_group(db, group_id)
        links = (
            await db.execute(
                select(CascadeLink).where(CascadeLink.application_id == group.application_id)
            )
        ).scalars().all()
        graph = CascadeGraph.from_links(links)
        return graph.chain(group_id, max_depth or self.settings.cascade_max_depth)
