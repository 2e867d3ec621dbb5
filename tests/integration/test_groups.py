"""
Integration tests for group queries and the triage workflow.

Tests cover:
- listGroups filters (status, severity, platform, timeframe, search)
- Sorting, pagination and unknown applications
- Allowed and rejected workflow transitions
- Snooze expiry
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from errorscope.errors import InvalidTransitionError, NotFoundError
from errorscope.models.error_group import GroupStatus, Severity
from errorscope.schemas.group import GroupFilter
from errorscope.services import group_workflow
from errorscope.services.event_bus import EventType
from errorscope.services.group_queries import get_group, list_groups, timeframe_bounds


@pytest.fixture
async def seeded(factory, now):
    """Four groups in 'shop' and one in 'admin'."""
    groups = {
        "key": await factory.group("KeyError", message="'sku' missing", last_seen=now - timedelta(minutes=10)),
        "memory": await factory.group(
            "MemoryError", severity=Severity.CRITICAL, status=GroupStatus.REOPENED,
            last_seen=now - timedelta(days=2), occurrence_count=40, priority_level=3,
        ),
        "timeout": await factory.group(
            "TimeoutError", severity=Severity.MEDIUM, status=GroupStatus.RESOLVED,
            last_seen=now - timedelta(days=20), occurrence_count=7,
        ),
        "snoozed": await factory.group(
            "ValueError", status=GroupStatus.SNOOZED, last_seen=now - timedelta(hours=3),
            snoozed_until=now + timedelta(hours=1),
        ),
        "admin": await factory.group("KeyError", application="admin"),
    }
    await factory.occurrences(groups["key"], [now - timedelta(minutes=10)], platform="iOS")
    await factory.occurrences(groups["memory"], [now - timedelta(days=2)], platform="Android")
    await factory.commit()
    return groups


def ids(response):
    return [item.id for item in response.items]


class TestListGroups:
    """Test filtering, ordering and pagination."""

    async def test_application_filter_and_default_sort(self, test_db, seeded, now):
        response = await list_groups(test_db, GroupFilter(application="shop"), now=now)

        assert response.total == 4
        assert ids(response) == [
            seeded["key"].id, seeded["snoozed"].id, seeded["memory"].id, seeded["timeout"].id,
        ]

    async def test_unresolved_status(self, test_db, seeded, now):
        response = await list_groups(test_db, GroupFilter(application="shop", status="unresolved"), now=now)

        assert set(ids(response)) == {seeded["key"].id, seeded["memory"].id}

    async def test_single_status_and_severity(self, test_db, seeded, now):
        resolved = await list_groups(test_db, GroupFilter(status="resolved"), now=now)
        critical = await list_groups(test_db, GroupFilter(severity=Severity.CRITICAL), now=now)

        assert ids(resolved) == [seeded["timeout"].id]
        assert ids(critical) == [seeded["memory"].id]

    async def test_platform_filter(self, test_db, seeded, now):
        response = await list_groups(test_db, GroupFilter(platform="Android"), now=now)

        assert ids(response) == [seeded["memory"].id]

    async def test_timeframe_filter(self, test_db, seeded, now):
        last_hour = await list_groups(test_db, GroupFilter(application="shop", timeframe="last_hour"), now=now)
        last_week = await list_groups(test_db, GroupFilter(application="shop", timeframe="last_7_days"), now=now)

        assert ids(last_hour) == [seeded["key"].id]
        assert set(ids(last_week)) == {seeded["key"].id, seeded["snoozed"].id, seeded["memory"].id}

    async def test_search_is_case_insensitive(self, test_db, seeded, now):
        by_type = await list_groups(test_db, GroupFilter(application="shop", search="memory"), now=now)
        by_message = await list_groups(test_db, GroupFilter(application="shop", search="SKU"), now=now)

        assert ids(by_type) == [seeded["memory"].id]
        assert ids(by_message) == [seeded["key"].id]

    async def test_sort_by_count_ascending(self, test_db, seeded, now):
        response = await list_groups(
            test_db, GroupFilter(application="shop", sort="occurrence_count", descending=False), now=now
        )

        assert ids(response)[-2:] == [seeded["timeout"].id, seeded["memory"].id]

    async def test_pagination_clamps_to_last_page(self, test_db, seeded, now):
        response = await list_groups(test_db, GroupFilter(application="shop", page=9, page_size=3), now=now)

        assert response.pages == 2
        assert response.page == 2
        assert len(response.items) == 1

    async def test_unknown_application_is_empty(self, test_db, seeded, now):
        response = await list_groups(test_db, GroupFilter(application="nope"), now=now)

        assert response.total == 0
        assert response.items == []

    async def test_get_group_not_found(self, test_db):
        with pytest.raises(NotFoundError):
            await get_group(test_db, uuid4())

    def test_timeframe_bounds(self, now):
        start, end = timeframe_bounds("yesterday", now)

        assert end == now.replace(hour=0)
        assert end - start == timedelta(days=1)
        with pytest.raises(ValueError):
            timeframe_bounds("last_century", now)


class TestWorkflow:
    """Test status transitions and triage fields."""

    async def test_resolve_records_who_and_why(self, test_db, seeded, event_bus, recorded_events):
        group = await group_workflow.resolve_group(
            test_db, seeded["key"].id, resolved_by="dana", comment="fixed in 1.2", event_bus=event_bus
        )

        assert group.status == GroupStatus.RESOLVED
        assert group.resolved_by == "dana"
        assert group.resolution_comment == "fixed in 1.2"
        assert group.resolved_at is not None
        assert recorded_events[0].event_type == EventType.GROUP_RESOLVED

    async def test_resolving_twice_is_rejected(self, test_db, seeded):
        with pytest.raises(InvalidTransitionError):
            await group_workflow.resolve_group(test_db, seeded["timeout"].id)

    async def test_manual_reopen(self, test_db, seeded):
        group = await group_workflow.reopen_group(test_db, seeded["timeout"].id)

        assert group.status == GroupStatus.REOPENED
        assert group.resolved_at is None

    async def test_snooze_and_unsnooze(self, test_db, seeded):
        snoozed = await group_workflow.snooze_group(test_db, seeded["key"].id, hours=4)
        assert snoozed.status == GroupStatus.SNOOZED
        assert snoozed.snoozed_until is not None

        woken = await group_workflow.unsnooze_group(test_db, seeded["key"].id)
        assert woken.status == GroupStatus.OPEN
        assert woken.snoozed_until is None

    async def test_cannot_snooze_resolved(self, test_db, seeded):
        with pytest.raises(InvalidTransitionError):
            await group_workflow.snooze_group(test_db, seeded["timeout"].id, hours=1)

    async def test_assign_and_priority(self, test_db, seeded):
        group = await group_workflow.assign_group(test_db, seeded["key"].id, "dana")
        assert group.assigned_to == "dana"

        group = await group_workflow.update_priority(test_db, seeded["key"].id, 3)
        assert group.priority_level == 3

        group = await group_workflow.unassign_group(test_db, seeded["key"].id)
        assert group.assigned_to is None

        with pytest.raises(ValueError):
            await group_workflow.update_priority(test_db, seeded["key"].id, 7)

    async def test_workflow_on_missing_group(self, test_db):
        with pytest.raises(NotFoundError):
            await group_workflow.assign_group(test_db, uuid4(), "dana")

    async def test_wake_expired_snoozes(self, test_db, seeded, now):
        assert await group_workflow.wake_expired_snoozes(test_db, now=now) == 0

        woken = await group_workflow.wake_expired_snoozes(test_db, now=now + timedelta(hours=2))

        assert woken == 1
        group = await test_db.get(type(seeded["snoozed"]), seeded["snoozed"].id, populate_existing=True)
        assert group.status == GroupStatus.OPEN
