"""Initial schema for Assetrecon.

Creates the catalog_assets, reconciliation_jobs and reconciliation_job_rows
tables, enables the pgvector extension, and adds the indexes used by vector
search, backfill scans and job listing.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    job_status = sa.Enum("pending", "processing", "completed", name="job_status")
    row_decision = sa.Enum("pending", "match", "no_match", name="row_decision")

    op.create_table(
        "catalog_assets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("brand", sa.Text(), nullable=True),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("location_path", sa.Text(), nullable=True),
        sa.Column("serial", sa.Text(), nullable=True),
        sa.Column("epc", sa.Text(), nullable=True),
        sa.Column("file_ext", sa.Text(), nullable=True),
        sa.Column("embedding_text", sa.Text(), nullable=True),
        sa.Column("text_embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("embedding_version", sa.Integer(), nullable=True),
        sa.Column("embedding_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("embedding_skip_reason", sa.Text(), nullable=True),
        sa.Column("is_reconciled", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled_job_id", sa.Uuid(), nullable=True),
        sa.Column("reconciled_row_number", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "text_embedding IS NULL OR embedding_skip_reason IS NULL",
            name="ck_catalog_assets_embedding_or_skip",
        ),
    )

    op.create_table(
        "reconciliation_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("status", job_status, nullable=False),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        sa.Column("processed_rows", sa.Integer(), server_default="0", nullable=False),
        sa.Column("location_filter", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "processed_rows >= 0 AND processed_rows <= total_rows",
            name="ck_reconciliation_jobs_progress",
        ),
    )

    op.create_table(
        "reconciliation_job_rows",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("reconciliation_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("row_number", sa.Integer(), nullable=False),
        sa.Column("sap_description", sa.Text(), server_default="", nullable=False),
        sa.Column("sap_location", sa.Text(), server_default="", nullable=False),
        sa.Column("suggestions", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("decision", row_decision, nullable=False),
        sa.Column("selected_asset_id", sa.Uuid(), nullable=True),
        sa.UniqueConstraint("job_id", "row_number", name="uq_job_rows_job_row_number"),
        sa.UniqueConstraint("job_id", "position", name="uq_job_rows_job_position"),
        sa.CheckConstraint(
            "(decision = 'match') = (selected_asset_id IS NOT NULL)",
            name="ck_job_rows_match_has_asset",
        ),
    )

    op.create_index("ix_catalog_assets_location_path", "catalog_assets", ["location_path"])
    op.create_index("ix_catalog_assets_created_at_id", "catalog_assets", ["created_at", "id"])
    op.create_index("ix_reconciliation_jobs_created_at", "reconciliation_jobs", ["created_at"])

    # Approximate nearest neighbour search over catalog embeddings
    op.execute(
        "CREATE INDEX ix_catalog_assets_text_embedding "
        "ON catalog_assets USING hnsw (text_embedding vector_cosine_ops)"
    )

    # Backfill scans only visit assets still waiting for an embedding
    op.execute(
        "CREATE INDEX ix_catalog_assets_pending_embedding "
        "ON catalog_assets (created_at, id) "
        "WHERE text_embedding IS NULL AND embedding_skip_reason IS NULL"
    )


def downgrade() -> None:
    op.drop_table("reconciliation_job_rows")
    op.drop_table("reconciliation_jobs")
    op.drop_table("catalog_assets")
    sa.Enum(name="row_decision").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="job_status").drop(op.get_bind(), checkfirst=True)
