"""
Snapshot rebuild queue + worker tests.

Tests cover:
  - One queue row per sheet, re-armed by later mutations
  - drain_queue rebuilds the cache row and removes the job
  - Failed rebuilds record a normalised error and retry until MAX_ATTEMPTS
  - SnapshotWorker.kick is a no-op while disabled or already scheduled
  - flask drain-snapshots CLI command
"""

import json

from conftest import ACTOR_ID, set_field_value
from sheetflow.models import db
from sheetflow.models.snapshot import SheetSnapshotCache, SnapshotRebuildJob
from sheetflow.services import sheet_service, snapshot_worker
from sheetflow.services.snapshot_worker import (
    MAX_ATTEMPTS,
    SnapshotWorker,
    drain_queue,
    normalize_error,
)


def _job(sheet_id):
    return SnapshotRebuildJob.query.filter_by(sheet_id=sheet_id).one_or_none()


class TestQueue:
    def test_create_enqueues_once(self, sheet):
        assert SnapshotRebuildJob.query.filter_by(sheet_id=sheet["id"]).count() == 1

    def test_edit_rearms_existing_job(self, tenant, sheet):
        doc = set_field_value(sheet["document"], "Design flow", "121")
        sheet_service.update_sheet(tenant, sheet["id"], ACTOR_ID, doc)
        assert SnapshotRebuildJob.query.filter_by(sheet_id=sheet["id"]).count() == 1
        assert _job(sheet["id"]).attempts == 0


class TestDrain:
    def test_drain_builds_cache(self, sheet):
        assert drain_queue(10) == 1
        assert _job(sheet["id"]) is None

        cache = db.session.get(SheetSnapshotCache, sheet["id"])
        payload = json.loads(cache.snapshot_json)
        assert payload["sheetName"] == "Pump P-101"
        assert payload["status"] == "Draft"

    def test_empty_queue(self, sheet):
        drain_queue(10)
        assert drain_queue(10) == 0

    def test_failure_records_error(self, sheet, monkeypatch):
        def _boom(sheet_id):
            raise RuntimeError("disk\n   full")

        monkeypatch.setattr(snapshot_worker, "_rebuild_cache", _boom)
        assert drain_queue(10) == 1

        job = _job(sheet["id"])
        assert job.attempts == 1
        assert job.last_error == "disk full"
        assert job.claimed_at is None

    def test_job_dropped_after_max_attempts(self, sheet, monkeypatch):
        def _boom(sheet_id):
            raise RuntimeError("nope")

        monkeypatch.setattr(snapshot_worker, "_rebuild_cache", _boom)
        for _ in range(MAX_ATTEMPTS):
            drain_queue(10)
        assert _job(sheet["id"]) is None
        assert db.session.get(SheetSnapshotCache, sheet["id"]) is None


class TestNormalizeError:
    def test_collapses_whitespace(self):
        assert normalize_error("a\n\tb   c ") == "a b c"

    def test_truncates(self):
        text = normalize_error(ValueError("x" * 800))
        assert len(text) == 500
        assert text.endswith("...")


class TestWorker:
    def test_kick_disabled_in_testing(self):
        assert SnapshotWorker.kick() is False

    def test_kick_absorbed_while_scheduled(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "SNAPSHOT_WORKER_ENABLED", True)
        monkeypatch.setattr(SnapshotWorker, "_scheduled", True)
        assert SnapshotWorker.kick() is False

    def test_cli_drain(self, app, sheet):
        result = app.test_cli_runner().invoke(args=["drain-snapshots", "--max-items", "5"])
        assert result.exit_code == 0
        assert "1 job(s) processed" in result.output
