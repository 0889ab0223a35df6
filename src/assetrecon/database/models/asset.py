"""Catalog asset model for Assetrecon.

Defines the CatalogAsset table holding the managed asset inventory. Each
asset carries descriptive attributes, a hierarchical location path, the
cached text that was embedded, its pgvector embedding, and the
reconciliation back-reference written when a human confirms a match.

An asset is in exactly one of three embedding states:
- not yet processed: no text_embedding, no embedding_skip_reason
- embedded: text_embedding set, embedding_skip_reason NULL
- skipped: embedding_skip_reason set, text_embedding NULL
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, DateTime, Index, Integer, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

from assetrecon.database.models.base import Base, TimestampMixin

# Vector length of text-embedding-3-small
EMBEDDING_DIMENSIONS = 1536

SKIP_REASON_MISSING_NAME = "missing_name"


class CatalogAsset(TimestampMixin, Base):
    """An entry of the managed asset catalog.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        name: Asset name.
        brand: Manufacturer or brand.
        model: Model designation.
        location_path: Slash-delimited location hierarchy (e.g. "Site/Building A/Floor 1").
        serial: Serial number.
        epc: External tag identifier (RFID EPC).
        file_ext: Extension of the attached media file, if any.
        embedding_text: Normalized text that was embedded.
        text_embedding: Embedding vector of embedding_text.
        embedding_version: Version of the embedding computation.
        embedding_updated_at: Timestamp of the last embedding write.
        embedding_skip_reason: Why the asset is excluded from backfill scans.
        is_reconciled: Whether a human confirmed this asset as a match.
        reconciled_at: Timestamp of the confirmation.
        reconciled_job_id: Job in which the confirmation happened.
        reconciled_row_number: Legacy row number that was matched.
    """

    __tablename__ = "catalog_assets"

    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    brand: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    serial: Mapped[str | None] = mapped_column(Text, nullable=True)
    epc: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_ext: Mapped[str | None] = mapped_column(Text, nullable=True)

    embedding_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    text_embedding = mapped_column(
        Vector(EMBEDDING_DIMENSIONS),
        nullable=True,
    )
    embedding_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    embedding_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    embedding_skip_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_reconciled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=false(),
        nullable=False,
    )
    reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    reconciled_job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    reconciled_row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_catalog_assets_location_path", "location_path"),
        Index("ix_catalog_assets_created_at_id", "created_at", "id"),
    )

    @property
    def has_embedding(self) -> bool:
        """Whether a vector has been stored for this asset."""
        return self.text_embedding is not None
