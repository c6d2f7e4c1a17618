"""create sheets, instruments and snapshot rebuild tables

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20260301_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "sheets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sheets_account_id"), "sheets", ["account_id"], unique=False)

    op.create_table(
        "instruments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("instrument_tag", sa.String(), nullable=False),
        sa.Column("instrument_tag_norm", sa.String(), nullable=True),
        sa.Column("instrument_type", sa.String(), nullable=True),
        sa.Column("service", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "instrument_tag_norm", name="uq_instruments_account_tag_norm"),
    )
    op.create_index(op.f("ix_instruments_account_id"), "instruments", ["account_id"], unique=False)
    op.create_index(op.f("ix_instruments_instrument_tag_norm"), "instruments", ["instrument_tag_norm"], unique=False)

    op.create_table(
        "instrument_datasheet_links",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("instrument_id", sa.Integer(), nullable=False),
        sa.Column("sheet_id", sa.Integer(), nullable=False),
        sa.Column("link_role", sa.String(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["instrument_id"], ["instruments.id"], ),
        sa.ForeignKeyConstraint(["sheet_id"], ["sheets.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_instrument_datasheet_links_account_id"), "instrument_datasheet_links", ["account_id"], unique=False)
    op.create_index(op.f("ix_instrument_datasheet_links_instrument_id"), "instrument_datasheet_links", ["instrument_id"], unique=False)
    op.create_index(op.f("ix_instrument_datasheet_links_sheet_id"), "instrument_datasheet_links", ["sheet_id"], unique=False)

    op.create_table(
        "instrument_loops",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("loop_tag", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_instrument_loops_account_id"), "instrument_loops", ["account_id"], unique=False)

    op.create_table(
        "instrument_loop_members",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("loop_id", sa.Integer(), nullable=False),
        sa.Column("instrument_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["loop_id"], ["instrument_loops.id"], ),
        sa.ForeignKeyConstraint(["instrument_id"], ["instruments.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("loop_id", "instrument_id", name="uq_instrument_loop_members_loop_instrument"),
    )
    op.create_index(op.f("ix_instrument_loop_members_account_id"), "instrument_loop_members", ["account_id"], unique=False)
    op.create_index(op.f("ix_instrument_loop_members_loop_id"), "instrument_loop_members", ["loop_id"], unique=False)
    op.create_index(op.f("ix_instrument_loop_members_instrument_id"), "instrument_loop_members", ["instrument_id"], unique=False)

    op.create_table(
        "sheet_instrument_snapshots",
        sa.Column("account_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("sheet_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("built_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("build_ms", sa.Integer(), nullable=True),
        sa.Column("instrument_count", sa.Integer(), nullable=False),
        sa.Column("build_version", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("account_id", "sheet_id"),
    )

    op.create_table(
        "sheet_instrument_snapshot_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("sheet_id", sa.Integer(), nullable=False),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(length=100), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_by", sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "sheet_id", name="uq_sheet_instrument_snapshot_queue_key"),
    )
    op.create_index(
        "ix_sheet_instrument_snapshot_queue_enqueued",
        "sheet_instrument_snapshot_queue",
        ["enqueued_at", "id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_sheet_instrument_snapshot_queue_claimed_at"),
        "sheet_instrument_snapshot_queue",
        ["claimed_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_sheet_instrument_snapshot_queue_claimed_at"), table_name="sheet_instrument_snapshot_queue")
    op.drop_index("ix_sheet_instrument_snapshot_queue_enqueued", table_name="sheet_instrument_snapshot_queue")
    op.drop_table("sheet_instrument_snapshot_queue")
    op.drop_table("sheet_instrument_snapshots")
    op.drop_index(op.f("ix_instrument_loop_members_instrument_id"), table_name="instrument_loop_members")
    op.drop_index(op.f("ix_instrument_loop_members_loop_id"), table_name="instrument_loop_members")
    op.drop_index(op.f("ix_instrument_loop_members_account_id"), table_name="instrument_loop_members")
    op.drop_table("instrument_loop_members")
    op.drop_index(op.f("ix_instrument_loops_account_id"), table_name="instrument_loops")
    op.drop_table("instrument_loops")
    op.drop_index(op.f("ix_instrument_datasheet_links_sheet_id"), table_name="instrument_datasheet_links")
    op.drop_index(op.f("ix_instrument_datasheet_links_instrument_id"), table_name="instrument_datasheet_links")
    op.drop_index(op.f("ix_instrument_datasheet_links_account_id"), table_name="instrument_datasheet_links")
    op.drop_table("instrument_datasheet_links")
    op.drop_index(op.f("ix_instruments_instrument_tag_norm"), table_name="instruments")
    op.drop_index(op.f("ix_instruments_account_id"), table_name="instruments")
    op.drop_table("instruments")
    op.drop_index(op.f("ix_sheets_account_id"), table_name="sheets")
    op.drop_table("sheets")
