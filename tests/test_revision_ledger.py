"""
Revision ledger tests.

Tests cover:
  - Gapless numbering 1..N per sheet, independent across sheets
  - Parallel writers on one sheet serialize on the sheet row (PostgreSQL only)
  - Invalid snapshots are refused before anything is written
  - Unique (sheet_id, revision_num) collision → StateConflictError
  - Newest-first paging with clamped page size
  - Corrupt stored JSON → CorruptDataError, never a substitute
"""

import threading

import pytest

from conftest import ACTOR_ID, build_document, set_field_value
from sheetflow.core.exceptions import CorruptDataError, StateConflictError, ValidationError
from sheetflow.models import db
from sheetflow.models.revision import SheetRevision
from sheetflow.services import revision_ledger
from sheetflow.services.sheet_service import create_sheet, get_sheet, update_sheet
from sheetflow.services.transaction import run_in_transaction


def _mint(sheet_id, n=1, **kwargs):
    revs = []
    for _ in range(n):
        revs.append(run_in_transaction(lambda: revision_ledger.create_revision(
            sheet_id, build_document(), actor_id=ACTOR_ID, status="Modified Draft", **kwargs,
        ).revision_num))
    return revs


class TestNumbering:
    def test_first_revision_is_one(self, sheet):
        assert revision_ledger.latest_revision_num(sheet["id"]) == 0
        assert _mint(sheet["id"]) == [1]

    def test_numbers_are_gapless(self, sheet):
        assert _mint(sheet["id"], 5) == [1, 2, 3, 4, 5]
        nums = [r.revision_num for r in SheetRevision.query.filter_by(sheet_id=sheet["id"])
                .order_by(SheetRevision.revision_num)]
        assert nums == list(range(1, 6))

    def test_sequences_are_per_sheet(self, tenant, sheet):
        other = create_sheet(tenant, ACTOR_ID, build_document(sheetName="Pump P-102"))
        assert _mint(sheet["id"], 2) == [1, 2]
        assert _mint(other["id"]) == [1]
        assert _mint(sheet["id"]) == [3]

    def test_invalid_snapshot_writes_nothing(self, sheet):
        with pytest.raises(ValidationError):
            run_in_transaction(lambda: revision_ledger.create_revision(
                sheet["id"], {"sheetName": ""}, actor_id=ACTOR_ID, status="Draft",
            ))
        assert SheetRevision.query.filter_by(sheet_id=sheet["id"]).count() == 0

    def test_duplicate_number_is_a_conflict(self, sheet, monkeypatch):
        _mint(sheet["id"])
        monkeypatch.setattr(revision_ledger, "next_revision_number", lambda sheet_id: 1)
        with pytest.raises(StateConflictError):
            _mint(sheet["id"])
        assert revision_ledger.latest_revision_num(sheet["id"]) == 1

    def test_stored_snapshot_is_canonical(self, sheet):
        _mint(sheet["id"], comment="first")
        rev = revision_ledger.list_revisions(sheet["id"])[1][0]
        details = revision_ledger.get_revision(sheet["id"], rev["revision_id"])
        assert details["comment"] == "first"
        assert details["snapshot"]["sheetName"] == "Pump P-101"
        assert details["snapshot"]["subsheets"][0]["fields"][0]["infoType"] == "decimal"


class TestPaging:
    def test_newest_first(self, sheet):
        _mint(sheet["id"], 3)
        total, items = revision_ledger.list_revisions(sheet["id"])
        assert total == 3
        assert [i["revision_num"] for i in items] == [3, 2, 1]

    def test_page_size_is_clamped(self, sheet, app):
        _mint(sheet["id"], 3)
        _total, items = revision_ledger.list_revisions(sheet["id"], page=1, page_size=0)
        assert len(items) == 1
        app.config["REVISION_PAGE_SIZE_MAX"] = 2
        try:
            _total, items = revision_ledger.list_revisions(sheet["id"], page=1, page_size=500)
            assert len(items) == 2
        finally:
            app.config["REVISION_PAGE_SIZE_MAX"] = 100

    def test_second_page_and_page_floor(self, sheet):
        _mint(sheet["id"], 3)
        _total, items = revision_ledger.list_revisions(sheet["id"], page=2, page_size=2)
        assert [i["revision_num"] for i in items] == [1]
        _total, items = revision_ledger.list_revisions(sheet["id"], page=-4, page_size=2)
        assert [i["revision_num"] for i in items] == [3, 2]


class TestReads:
    def test_get_revision_is_scoped_to_sheet(self, tenant, sheet):
        other = create_sheet(tenant, ACTOR_ID, build_document(sheetName="Pump P-102"))
        _mint(sheet["id"])
        rev_id = revision_ledger.list_revisions(sheet["id"])[1][0]["revision_id"]
        assert revision_ledger.get_revision(other["id"], rev_id) is None

    def test_corrupt_json_raises(self, sheet):
        _mint(sheet["id"])
        row = SheetRevision.query.filter_by(sheet_id=sheet["id"]).first()
        row.snapshot_json = "{not json"
        db.session.commit()
        with pytest.raises(CorruptDataError, match="Invalid snapshot JSON"):
            revision_ledger.get_revision(sheet["id"], row.id)

    def test_non_object_json_is_corrupt(self, sheet):
        _mint(sheet["id"])
        row = SheetRevision.query.filter_by(sheet_id=sheet["id"]).first()
        row.snapshot_json = "[1, 2, 3]"
        db.session.commit()
        with pytest.raises(CorruptDataError):
            revision_ledger.decode_snapshot(row)


class TestConcurrentWriters:
    WRITERS = 6

    def test_parallel_edits_get_gapless_numbers(self, app, tenant, sheet):
        if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("postgresql"):
            pytest.skip("row locks need PostgreSQL; set TEST_DATABASE_URL")
        doc = get_sheet(tenant, sheet["id"])["document"]
        db.session.rollback()
        nums, errors = [], []

        def _writer(value):
            with app.app_context():
                try:
                    result = update_sheet(tenant, sheet["id"], ACTOR_ID,
                                          set_field_value(doc, "Design flow", value))
                    nums.append(result["revision_num"])
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=_writer, args=(str(130 + i),))
                   for i in range(self.WRITERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert sorted(nums) == list(range(1, self.WRITERS + 1))
        assert SheetRevision.query.filter_by(sheet_id=sheet["id"]).count() == self.WRITERS
