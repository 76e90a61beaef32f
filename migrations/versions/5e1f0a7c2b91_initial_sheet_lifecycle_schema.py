"""initial_sheet_lifecycle_schema

Creates the datasheet lifecycle tables:
  - tenants
  - sheets, subsheets, field_definitions   — document structure + header
  - value_sets, field_values, variance_overrides
  - sheet_revisions                         — append-only ledger
  - ratings_blocks, ratings_entries
  - audit_logs, notifications
  - snapshot_rebuild_jobs, sheet_snapshot_cache

Tables created conditionally (IF NOT EXISTS semantics) so the revision can
run against a development database that already received them through
db.create_all().

Revision ID: 5e1f0a7c2b91
Revises:
Create Date: 2026-10-18 09:12:44.104519
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1f0a7c2b91'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Tenants ───────────────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    # ── Sheets ────────────────────────────────────────────────────────────
    if "sheets" not in existing:
        op.create_table(
            "sheets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("sheet_name", sa.String(length=255), nullable=False),
            sa.Column("sheet_desc", sa.String(length=500), nullable=False),
            sa.Column("sheet_desc2", sa.String(length=500), nullable=True),
            sa.Column("client_doc_num", sa.Integer(), nullable=True),
            sa.Column("client_project_num", sa.Integer(), nullable=True),
            sa.Column("company_doc_num", sa.Integer(), nullable=True),
            sa.Column("company_project_num", sa.Integer(), nullable=True),
            sa.Column("area_id", sa.Integer(), nullable=True),
            sa.Column("package_name", sa.String(length=100), nullable=True),
            sa.Column("revision_num", sa.Integer(), nullable=True),
            sa.Column("revision_date", sa.String(length=30), nullable=True),
            sa.Column("prepared_by_id", sa.Integer(), nullable=True),
            sa.Column("prepared_by_date", sa.String(length=30), nullable=True),
            sa.Column("item_location", sa.String(length=255), nullable=True),
            sa.Column("required_qty", sa.Integer(), nullable=True),
            sa.Column("equipment_name", sa.String(length=255), nullable=True),
            sa.Column("equipment_tag_num", sa.String(length=100), nullable=True),
            sa.Column("service_name", sa.String(length=255), nullable=True),
            sa.Column("equip_size", sa.Float(), nullable=True),
            sa.Column("model_num", sa.String(length=100), nullable=True),
            sa.Column("install_pack_num", sa.String(length=100), nullable=True),
            sa.Column("category_id", sa.Integer(), nullable=True),
            sa.Column("client_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("manu_id", sa.Integer(), nullable=True),
            sa.Column("supp_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft",
                      comment="Draft | Modified Draft | Verified | Approved | Rejected"),
            sa.Column("is_template", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("parent_sheet_id", sa.Integer(), nullable=True,
                      comment="Template this sheet was filled from"),
            sa.Column("verified_by_id", sa.Integer(), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejected_by_id", sa.Integer(), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("reject_comment", sa.Text(), nullable=True),
            sa.Column("approved_by_id", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("modified_by_id", sa.Integer(), nullable=True),
            sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_sheet_id"], ["sheets.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sheets_tenant_id", "sheets", ["tenant_id"])
        op.create_index("ix_sheets_tenant_status", "sheets", ["tenant_id", "status"])
        op.create_index("ix_sheets_equipment_tag_num", "sheets", ["equipment_tag_num"])

    if "subsheets" not in existing:
        op.create_table(
            "subsheets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_subsheets_sheet_id", "subsheets", ["sheet_id"])

    if "field_definitions" not in existing:
        op.create_table(
            "field_definitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("subsheet_id", sa.Integer(), nullable=False),
            sa.Column("label", sa.String(length=255), nullable=False),
            sa.Column("info_type", sa.String(length=10), nullable=False, server_default="varchar",
                      comment="int | decimal | varchar"),
            sa.Column("uom", sa.String(length=30), nullable=True),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("options", sa.JSON(), nullable=True, comment='["option A", "option B"]'),
            sa.ForeignKeyConstraint(["subsheet_id"], ["subsheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_field_definitions_subsheet_id", "field_definitions", ["subsheet_id"])

    # ── Value contexts ────────────────────────────────────────────────────
    if "value_sets" not in existing:
        op.create_table(
            "value_sets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("context", sa.String(length=20), nullable=False,
                      comment="Requirement | Offered | AsBuilt"),
            sa.Column("party_id", sa.Integer(), nullable=True, comment="Counterparty for Offered sets"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft",
                      comment="Draft | Locked | Verified"),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sheet_id", "context", "party_id", name="uq_value_set_context_party"),
        )
        op.create_index("ix_value_sets_sheet_id", "value_sets", ["sheet_id"])

    if "field_values" not in existing:
        op.create_table(
            "field_values",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("field_id", sa.Integer(), nullable=False),
            sa.Column("value_set_id", sa.Integer(), nullable=True),
            sa.Column("value", sa.Text(), nullable=True),
            sa.Column("uom", sa.String(length=30), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["field_id"], ["field_definitions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["value_set_id"], ["value_sets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sheet_id", "field_id", "value_set_id", name="uq_field_value_key"),
        )
        op.create_index("ix_field_values_sheet_id", "field_values", ["sheet_id"])
        op.create_index("ix_field_values_value_set", "field_values", ["value_set_id"])

    if "variance_overrides" not in existing:
        op.create_table(
            "variance_overrides",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("value_set_id", sa.Integer(), nullable=False),
            sa.Column("field_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="DeviatesAccepted | DeviatesRejected"),
            sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["value_set_id"], ["value_sets.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["field_id"], ["field_definitions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("value_set_id", "field_id", name="uq_variance_value_set_field"),
        )
        op.create_index("ix_variance_overrides_value_set_id", "variance_overrides", ["value_set_id"])

    # ── Revision ledger ───────────────────────────────────────────────────
    if "sheet_revisions" not in existing:
        op.create_table(
            "sheet_revisions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("revision_num", sa.Integer(), nullable=False,
                      comment="1, 2, 3, … per sheet, no gaps"),
            sa.Column("snapshot_json", sa.Text(), nullable=False, comment="Serialized validated document"),
            sa.Column("status", sa.String(length=20), nullable=True,
                      comment="Sheet status captured with the snapshot"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sheet_id", "revision_num", name="uq_sheet_revision_num"),
        )
        op.create_index("ix_sheet_revisions_sheet_id", "sheet_revisions", ["sheet_id"])

    # ── Ratings ───────────────────────────────────────────────────────────
    if "ratings_blocks" not in existing:
        op.create_table(
            "ratings_blocks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("block_type", sa.String(length=50), nullable=False, server_default="nameplate"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("source_value_set_id", sa.Integer(), nullable=True),
            sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("locked_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["source_value_set_id"], ["value_sets.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_ratings_blocks_sheet_id", "ratings_blocks", ["sheet_id"])

    if "ratings_entries" not in existing:
        op.create_table(
            "ratings_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ratings_block_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("value", sa.String(length=255), nullable=True),
            sa.Column("uom", sa.String(length=30), nullable=True),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["ratings_block_id"], ["ratings_blocks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_ratings_entries_ratings_block_id", "ratings_entries", ["ratings_block_id"])

    # ── Audit + notifications ─────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False,
                      comment="sheet | value_set | ratings_block"),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
        op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("recipient_id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"])
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
        op.create_index("ix_notifications_sheet_id", "notifications", ["sheet_id"])

    # ── Snapshot rebuild queue + cache ────────────────────────────────────
    if "snapshot_rebuild_jobs" not in existing:
        op.create_table(
            "snapshot_rebuild_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True,
                      comment="Set while a worker is processing the row"),
            sa.Column("last_error", sa.String(length=500), nullable=True),
            sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sheet_id"),
        )

    if "sheet_snapshot_cache" not in existing:
        op.create_table(
            "sheet_snapshot_cache",
            sa.Column("sheet_id", sa.Integer(), nullable=False),
            sa.Column("snapshot_json", sa.Text(), nullable=False),
            sa.Column("rebuilt_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("sheet_id"),
        )


def downgrade():
    for table in (
        "sheet_snapshot_cache",
        "snapshot_rebuild_jobs",
        "notifications",
        "audit_logs",
        "ratings_entries",
        "ratings_blocks",
        "sheet_revisions",
        "variance_overrides",
        "field_values",
        "value_sets",
        "field_definitions",
        "subsheets",
        "sheets",
        "tenants",
    ):
        op.drop_table(table)
