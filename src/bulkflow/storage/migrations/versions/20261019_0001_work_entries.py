"""Work entry queue table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "work_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("region", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("work_type", sa.String(), nullable=False),
        sa.Column("instance_id", sa.String(), nullable=True),
        sa.Column("request_content", sa.LargeBinary(), nullable=False),
        sa.Column("request_parameters_json", sa.Text(), nullable=True),
        sa.Column("context_json", sa.Text(), nullable=True),
        sa.Column("remote_request_id", sa.String(), nullable=True),
        sa.Column("submission_retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remote_result_id", sa.String(), nullable=True),
        sa.Column("last_remote_status", sa.String(), nullable=True),
        sa.Column("processing_retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content", sa.LargeBinary(), nullable=True),
        sa.Column("download_retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("callback_key", sa.String(), nullable=True),
        sa.Column("callback_payload_json", sa.Text(), nullable=True),
        sa.Column("callback_retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_work_entries_kind", "work_entries", ["kind"])
    op.create_index("ix_work_entries_instance_id", "work_entries", ["instance_id"])
    op.create_index("ix_work_entries_remote_request_id", "work_entries", ["remote_request_id"])
    op.create_index(
        "idx_work_entries_scope",
        "work_entries",
        ["kind", "region", "account_id", "is_locked"],
    )


def downgrade() -> None:
    op.drop_index("idx_work_entries_scope", table_name="work_entries")
    op.drop_index("ix_work_entries_remote_request_id", table_name="work_entries")
    op.drop_index("ix_work_entries_instance_id", table_name="work_entries")
    op.drop_index("ix_work_entries_kind", table_name="work_entries")
    op.drop_table("work_entries")
