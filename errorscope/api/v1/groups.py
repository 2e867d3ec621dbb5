"""
Error group listing, detail and triage workflow endpoints.
"""
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.api.dependencies import get_bus
from errorscope.database import get_db
from errorscope.schemas.group import (
    AssignRequest,
    GroupFilter,
    GroupListResponse,
    GroupResponse,
    PriorityRequest,
    ResolveRequest,
    SnoozeRequest,
)
from errorscope.services import group_workflow
from errorscope.services.event_bus import Event, EventBus, EventType
from errorscope.services.group_queries import get_group, list_groups

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=GroupListResponse)
async def list_error_groups(
    filters: Annotated[GroupFilter, Query()],
    db: AsyncSession = Depends(get_db),
):
    """
    List error groups with filtering, search, sorting and pagination.

    Unknown application names return an empty page.
    """
    return await list_groups(db, filters)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_error_group(
    group_id: UUID,
    db: AsyncSession = Depends(get_db),
    event_bus: EventBus = Depends(get_bus),
):
    group = await get_group(db, group_id)
    await event_bus.publish(
        Event(EventType.GROUP_VIEWED, application_id=group.application_id, group_id=group.id)
    )
    return group


@router.post("/{group_id}/resolve", response_model=GroupResponse)
async def resolve_error_group(
    group_id: UUID,
    request: ResolveRequest,
    db: AsyncSession = Depends(get_db),
    event_bus: EventBus = Depends(get_bus),
):
    """Resolve a group. A later occurrence reopens it automatically."""
    return await group_workflow.resolve_group(
        db, group_id, resolved_by=request.resolved_by, comment=request.comment, event_bus=event_bus
    )


@router.post("/{group_id}/reopen", response_model=GroupResponse)
async def reopen_error_group(group_id: UUID, db: AsyncSession = Depends(get_db)):
    return await group_workflow.reopen_group(db, group_id)


@router.post("/{group_id}/snooze", response_model=GroupResponse)
async def snooze_error_group(
    group_id: UUID,
    request: SnoozeRequest,
    db: AsyncSession = Depends(get_db),
):
    return await group_workflow.snooze_group(db, group_id, request.hours)


@router.post("/{group_id}/unsnooze", response_model=GroupResponse)
async def unsnooze_error_group(group_id: UUID, db: AsyncSession = Depends(get_db)):
    return await group_workflow.unsnooze_group(db, group_id)


@router.post("/{group_id}/assign", response_model=GroupResponse)
async def assign_error_group(
    group_id: UUID,
    request: AssignRequest,
    db: AsyncSession = Depends(get_db),
):
    return await group_workflow.assign_group(db, group_id, request.assignee)


@router.post("/{group_id}/unassign", response_model=GroupResponse)
async def unassign_error_group(group_id: UUID, db: AsyncSession = Depends(get_db)):
    return await group_workflow.unassign_group(db, group_id)


@router.patch("/{group_id}/priority", response_model=GroupResponse)
async def update_error_group_priority(
    group_id: UUID,
    request: PriorityRequest,
    db: AsyncSession = Depends(get_db),
):
    return await group_workflow.update_priority(db, group_id, request.priority_level)
