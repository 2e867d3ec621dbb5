"""
Unit tests for the Celery task bodies.

The database and services are replaced; these tests cover payload handling
and per-application failure isolation only.
"""
from contextlib import asynccontextmanager
from uuid import uuid4

import pytest

from errorscope.schemas.analytics import CascadeRunSummary
from errorscope.worker.tasks import analytics as analytics_tasks
from errorscope.worker.tasks import ingestion as ingestion_tasks


class TestRecordOccurrenceTask:
    def test_malformed_payload_is_rejected(self):
        result = ingestion_tasks.record_occurrence({"error_type": "   "})

        assert result["status"] == "rejected"

    def test_recorded(self, monkeypatch):
        group_id = uuid4()

        async def fake_record(report):
            assert report.error_type == "KeyError"
            return group_id

        monkeypatch.setattr(ingestion_tasks, "_record", fake_record)

        result = ingestion_tasks.record_occurrence({"error_type": "KeyError"})

        assert result == {"status": "ok", "group_id": str(group_id)}

    def test_ignored(self, monkeypatch):
        async def fake_record(report):
            return None

        monkeypatch.setattr(ingestion_tasks, "_record", fake_record)

        assert ingestion_tasks.record_occurrence({"error_type": "KeyError"}) == {"status": "ignored"}

    def test_storage_error_is_reported(self, monkeypatch):
        async def fake_record(report):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(ingestion_tasks, "_record", fake_record)

        result = ingestion_tasks.record_occurrence({"error_type": "KeyError"})

        assert result["status"] == "error"
        assert "database unavailable" in result["message"]


class TestPerApplication:
    @pytest.fixture(autouse=True)
    def no_database(self, monkeypatch):
        @asynccontextmanager
        async def fake_db_context():
            yield None

        async def fake_names():
            return ["admin", "shop"]

        monkeypatch.setattr(analytics_tasks, "get_db_context", fake_db_context)
        monkeypatch.setattr(analytics_tasks, "_application_names", fake_names)

    async def test_failure_in_one_application_does_not_stop_others(self):
        async def step(db, application):
            if application == "admin":
                raise RuntimeError("boom")
            return CascadeRunSummary(
                application=application,
                groups_evaluated=2,
                pairs_evaluated=2,
                links_stored=1,
                links_removed=0,
            )

        result = await analytics_tasks._per_application("cascade_detection", step)

        assert result["status"] == "ok"
        assert result["applications"]["admin"]["status"] == "error"
        assert result["applications"]["shop"]["links_stored"] == 1
