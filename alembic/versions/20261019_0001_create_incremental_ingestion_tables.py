"""create incremental ingestion tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ingestions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider_name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("next_action", sa.String(length=32), nullable=False),
        sa.Column("next_action_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("ingestion_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rest_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_ticket", sa.String(length=64), nullable=False),
        sa.Column("burst_lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "provider_name",
            "completion_ticket",
            name="uq_ingestions_provider_completion_ticket",
        ),
    )
    op.create_index("ix_ingestions_provider_name", "ingestions", ["provider_name"], unique=False)
    op.create_index("ix_ingestions_status", "ingestions", ["status"], unique=False)

    op.create_table(
        "ingestion_marks",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ingestion_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("cursor", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["ingestion_id"], ["ingestions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ingestion_id", "sequence", name="uq_ingestion_marks_ingestion_sequence"),
    )
    op.create_index("ix_ingestion_marks_ingestion_id", "ingestion_marks", ["ingestion_id"], unique=False)

    op.create_table(
        "ingestion_mark_entities",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ingestion_mark_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ref", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["ingestion_mark_id"], ["ingestion_marks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ingestion_mark_entities_mark_id",
        "ingestion_mark_entities",
        ["ingestion_mark_id"],
        unique=False,
    )
    op.create_index("ix_ingestion_mark_entities_ref", "ingestion_mark_entities", ["ref"], unique=False)

    op.create_table(
        "catalog_entities",
        sa.Column("ref", sa.Text(), nullable=False),
        sa.Column("provider_name", sa.String(length=255), nullable=False),
        sa.Column("location_key", sa.Text(), nullable=True),
        sa.Column("entity", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("ref"),
    )
    op.create_index("ix_catalog_entities_provider_name", "catalog_entities", ["provider_name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_catalog_entities_provider_name", table_name="catalog_entities")
    op.drop_table("catalog_entities")
    op.drop_index("ix_ingestion_mark_entities_ref", table_name="ingestion_mark_entities")
    op.drop_index("ix_ingestion_mark_entities_mark_id", table_name="ingestion_mark_entities")
    op.drop_table("ingestion_mark_entities")
    op.drop_index("ix_ingestion_marks_ingestion_id", table_name="ingestion_marks")
    op.drop_table("ingestion_marks")
    op.drop_index("ix_ingestions_status", table_name="ingestions")
    op.drop_index("ix_ingestions_provider_name", table_name="ingestions")
    op.drop_table("ingestions")
