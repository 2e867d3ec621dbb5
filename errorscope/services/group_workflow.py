"""
Triage workflow for error groups: resolve, snooze, assign, prioritise.

Senior Engineering Note:
- Rows are locked with SELECT FOR UPDATE so a concurrent ingestion reopen
  cannot be overwritten by a stale resolve
- Only workflow columns are flushed; occurrence_count stays owned by ingestion
- Transitions not allowed from the current status raise InvalidTransitionError
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.errors import InvalidTransitionError, NotFoundError
from errorscope.models.error_group import ErrorGroup, GroupStatus
from errorscope.services.event_bus import Event, EventBus, EventType
from errorscope.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[GroupStatus, set[GroupStatus]] = {
    GroupStatus.OPEN: {GroupStatus.RESOLVED, GroupStatus.SNOOZED},
    GroupStatus.REOPENED: {GroupStatus.RESOLVED, GroupStatus.SNOOZED},
    GroupStatus.SNOOZED: {GroupStatus.OPEN, GroupStatus.RESOLVED},
    GroupStatus.RESOLVED: {GroupStatus.REOPENED},
}


async def _locked_group(db: AsyncSession, group_id: UUID) -> ErrorGroup:
    stmt = select(ErrorGroup).where(ErrorGroup.id == group_id).with_for_update()
    group = (await db.execute(stmt)).scalar_one_or_none()
    if group is None:
        raise NotFoundError("ErrorGroup", group_id)
    return group


def _transition(group: ErrorGroup, target: GroupStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[group.status]:
        raise InvalidTransitionError(
            f"Cannot move group {group.id} from {group.status.value} to {target.value}"
        )
    logger.info(
        f"Group {group.id} {group.status.value} -> {target.value}",
        extra={"group_id": str(group.id), "status": target.value},
    )
    group.status = target
    group.status_changed_at = utcnow()


async def resolve_group(
    db: AsyncSession,
    group_id: UUID,
    resolved_by: Optional[str] = None,
    comment: Optional[str] = None,
    event_bus: Optional[EventBus] = None,
) -> ErrorGroup:
    group = await _locked_group(db, group_id)
    _transition(group, GroupStatus.RESOLVED)
    group.resolved_at = utcnow()
    group.resolved_by = resolved_by
    group.resolution_comment = comment
    group.snoozed_until = None
    await db.commit()

    if event_bus is not None:
        await event_bus.publish(
            Event(
                EventType.GROUP_RESOLVED,
                application_id=group.application_id,
                group_id=group.id,
                payload={"resolved_by": resolved_by},
            )
        )
    return group


async def reopen_group(db: AsyncSession, group_id: UUID) -> ErrorGroup:
    """Manual reopen of a resolved group."""
    group = await _locked_group(db, group_id)
    _transition(group, GroupStatus.REOPENED)
    group.reopened_at = utcnow()
    group.resolved_at = None
    await db.commit()
    return group


async def snooze_group(db: AsyncSession, group_id: UUID, hours: int) -> ErrorGroup:
    group = await _locked_group(db, group_id)
    _transition(group, GroupStatus.SNOOZED)
    group.snoozed_until = utcnow() + timedelta(hours=hours)
    await db.commit()
    return group


async def unsnooze_group(db: AsyncSession, group_id: UUID) -> ErrorGroup:
    group = await _locked_group(db, group_id)
    _transition(group, GroupStatus.OPEN)
    group.snoozed_until = None
    await db.commit()
    return group


async def assign_group(db: AsyncSession, group_id: UUID, assignee: str) -> ErrorGroup:
    group = await _locked_group(db, group_id)
    group.assigned_to = assignee
    await db.commit()
    return group


async def unassign_group(db: AsyncSession, group_id: UUID) -> ErrorGroup:
    group = await _locked_group(db, group_id)
    group.assigned_to = None
    await db.commit()
    return group


async def update_priority(db: AsyncSession, group_id: UUID, priority_level: int) -> ErrorGroup:
    if not 0 <= priority_level <= 3:
        raise ValueError(f"priority_level must be between 0 and 3, got {priority_level}")
    group = await _locked_group(db, group_id)
    group.priority_level = priority_level
    await db.commit()
    return group


async def wake_expired_snoozes(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Return snoozed groups whose snooze has elapsed to open. Returns rows updated."""
    now = now or utcnow()
    stmt = (
        update(ErrorGroup)
        .where(ErrorGroup.status == GroupStatus.SNOOZED)
        .where(ErrorGroup.snoozed_until <= now)
        .values(
            status=GroupStatus.OPEN,
            snoozed_until=None,
            status_changed_at=now,
            updated_at=now,
        )
    )
    result = await db.execute(stmt)
    await db.commit()
    if result.rowcount:
        logger.info(f"Woke {result.rowcount} snoozed groups")
    return result.rowcount
