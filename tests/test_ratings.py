"""
Ratings lock coordinator tests.

Tests cover:
  - CRUD of ratings blocks with ordered entries, independent of sheet status
  - Lock requires an Approved sheet; locking is idempotent
  - Locked blocks refuse update and delete
  - Unlock always succeeds and re-opens the block
"""

import pytest

from conftest import ACTOR_ID, ADMIN_ID, REVIEWER_ID
from sheetflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from sheetflow.models.ratings import RatingsBlock
from sheetflow.services import ratings_service as rs
from sheetflow.services import sheet_lifecycle

ENTRIES = [
    {"key": "Rated power", "value": 55, "uom": "kW"},
    {"key": "Speed", "value": "2950", "uom": "rpm"},
]


@pytest.fixture()
def block(tenant, sheet):
    return rs.create_ratings_block(tenant, sheet["id"], {"entries": ENTRIES, "notes": "motor"}, ACTOR_ID)


def _approve(tenant, sheet_id):
    sheet_lifecycle.verify_sheet(tenant, sheet_id, REVIEWER_ID)
    sheet_lifecycle.approve_sheet(tenant, sheet_id, REVIEWER_ID)


class TestCrud:
    def test_create(self, block, sheet):
        assert block["sheet_id"] == sheet["id"]
        assert block["block_type"] == "nameplate"
        assert block["is_locked"] is False
        assert [(e["key"], e["value"], e["order_index"]) for e in block["entries"]] == [
            ("Rated power", "55", 0), ("Speed", "2950", 1),
        ]

    def test_entry_key_required(self, tenant, sheet):
        with pytest.raises(ValidationError, match="key"):
            rs.create_ratings_block(tenant, sheet["id"], {"entries": [{"value": "1"}]}, ACTOR_ID)

    def test_update_replaces_entries(self, tenant, sheet, block):
        updated = rs.update_ratings_block(
            tenant, sheet["id"], block["ratings_block_id"],
            {"entries": [{"key": "Voltage", "value": "400", "uom": "V"}], "notes": "re-rated"},
            ACTOR_ID,
        )
        assert updated["notes"] == "re-rated"
        assert [e["key"] for e in updated["entries"]] == ["Voltage"]

    def test_editable_regardless_of_sheet_status(self, tenant, sheet, block):
        sheet_lifecycle.verify_sheet(tenant, sheet["id"], REVIEWER_ID)
        updated = rs.update_ratings_block(tenant, sheet["id"], block["ratings_block_id"],
                                          {"notes": "after verify"}, ACTOR_ID)
        assert updated["notes"] == "after verify"

    def test_source_value_set_must_belong_to_sheet(self, tenant, sheet):
        with pytest.raises(ValidationError, match="source_value_set_id"):
            rs.create_ratings_block(tenant, sheet["id"], {"source_value_set_id": 123456}, ACTOR_ID)

    def test_delete(self, tenant, sheet, block):
        rs.delete_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ACTOR_ID)
        assert RatingsBlock.query.filter_by(sheet_id=sheet["id"]).count() == 0

    def test_list(self, tenant, sheet, block):
        rs.create_ratings_block(tenant, sheet["id"], {"block_type": "motor"}, ACTOR_ID)
        assert [b["block_type"] for b in rs.list_ratings_blocks(tenant, sheet["id"])] == ["nameplate", "motor"]

    def test_other_tenant(self, other_tenant, sheet, block):
        with pytest.raises(NotFoundError):
            rs.get_ratings_block(other_tenant, sheet["id"], block["ratings_block_id"])


class TestLocking:
    def test_lock_requires_approved(self, tenant, sheet, block):
        with pytest.raises(StateConflictError, match="approved datasheets"):
            rs.lock_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ACTOR_ID)

    def test_lock_and_idempotent_relock(self, tenant, sheet, block):
        _approve(tenant, sheet["id"])
        locked = rs.lock_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ACTOR_ID)
        assert locked["is_locked"] is True
        assert locked["locked_by_id"] == ACTOR_ID

        again = rs.lock_ratings_block(tenant, sheet["id"], block["ratings_block_id"], REVIEWER_ID)
        assert again["locked_by_id"] == ACTOR_ID
        assert again["is_locked"] is True

    def test_locked_block_refuses_writes(self, tenant, sheet, block):
        _approve(tenant, sheet["id"])
        rs.lock_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ACTOR_ID)
        with pytest.raises(StateConflictError, match="locked"):
            rs.update_ratings_block(tenant, sheet["id"], block["ratings_block_id"], {"notes": "x"}, ACTOR_ID)
        with pytest.raises(StateConflictError, match="locked"):
            rs.delete_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ACTOR_ID)

    def test_unlock_reopens(self, tenant, sheet, block):
        _approve(tenant, sheet["id"])
        rs.lock_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ACTOR_ID)
        unlocked = rs.unlock_ratings_block(tenant, sheet["id"], block["ratings_block_id"], ADMIN_ID)
        assert unlocked["is_locked"] is False
        updated = rs.update_ratings_block(tenant, sheet["id"], block["ratings_block_id"],
                                          {"notes": "corrected"}, ACTOR_ID)
        assert updated["notes"] == "corrected"
