"""Catalog asset query functions for Assetrecon.

Provides async functions for creating and reading catalog assets, scanning
for assets that still need an embedding, and the conditional writes used by
the backfill pipeline and by match decisions.

Conditional writes only touch a row while it is still in the expected state,
so concurrent or repeated runs never overwrite each other's results.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assetrecon.database.models.asset import CatalogAsset
from assetrecon.database.models.base import utcnow

if TYPE_CHECKING:
    from assetrecon.intelligence.location import LocationFilter

logger = structlog.get_logger(__name__)

# Keyset position of the last asset seen by a scan: (created_at, id)
AssetCursor = tuple[datetime, UUID]


def _pending_embedding_clause() -> Any:
    return and_(
        CatalogAsset.text_embedding.is_(None),
        CatalogAsset.embedding_skip_reason.is_(None),
    )


async def create_asset(
    session: AsyncSession,
    name: str | None = None,
    brand: str | None = None,
    model: str | None = None,
    location_path: str | None = None,
    serial: str | None = None,
    epc: str | None = None,
    file_ext: str | None = None,
) -> CatalogAsset:
    """Create a new catalog asset without an embedding.

    Args:
        session: Active async database session.
        name: Asset name.
        brand: Manufacturer or brand.
        model: Model designation.
        location_path: Slash-delimited location hierarchy.
        serial: Serial number.
        epc: External tag identifier.
        file_ext: Extension of the attached media file.

    Returns:
        The newly created CatalogAsset instance.
    """
    asset = CatalogAsset(
        name=name,
        brand=brand,
        model=model,
        location_path=location_path,
        serial=serial,
        epc=epc,
        file_ext=file_ext,
        is_reconciled=False,
    )
    session.add(asset)
    await session.commit()

    logger.debug("asset_created", asset_id=str(asset.id), name=name)
    return asset


async def get_asset(
    session: AsyncSession,
    asset_id: UUID,
) -> CatalogAsset | None:
    """Retrieve a catalog asset by ID.

    Args:
        session: Active async database session.
        asset_id: UUID of the asset to retrieve.

    Returns:
        The CatalogAsset instance if found, None otherwise.
    """
    stmt = select(CatalogAsset).where(CatalogAsset.id == asset_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def count_assets(session: AsyncSession) -> int:
    """Count all catalog assets."""
    result = await session.execute(select(func.count()).select_from(CatalogAsset))
    return int(result.scalar_one())


async def count_pending_embedding(session: AsyncSession) -> int:
    """Count assets with neither an embedding nor a skip reason."""
    stmt = (
        select(func.count())
        .select_from(CatalogAsset)
        .where(_pending_embedding_clause())
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def get_assets_pending_embedding(
    session: AsyncSession,
    limit: int,
    after: AssetCursor | None = None,
) -> list[CatalogAsset]:
    """Fetch the next batch of assets that still need an embedding.

    Assets are ordered by (created_at, id). Passing the position of the last
    asset of the previous batch as ``after`` continues the scan past it, so a
    batch that failed is not fetched again within the same run.

    Args:
        session: Active async database session.
        limit: Maximum number of assets to return.
        after: Keyset cursor of the last asset already seen.

    Returns:
        List of pending CatalogAsset instances in scan order.
    """
    stmt = select(CatalogAsset).where(_pending_embedding_clause())

    if after is not None:
        created_at, asset_id = after
        stmt = stmt.where(
            or_(
                CatalogAsset.created_at > created_at,
                and_(
                    CatalogAsset.created_at == created_at,
                    CatalogAsset.id > asset_id,
                ),
            )
        )

    stmt = stmt.order_by(CatalogAsset.created_at.asc(), CatalogAsset.id.asc()).limit(
        limit
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_embedding_skipped(
    session: AsyncSession,
    asset_ids: Sequence[UUID],
    reason: str,
    embedding_version: int,
) -> int:
    """Record a skip reason on assets that are still unembedded.

    Args:
        session: Active async database session.
        asset_ids: Assets to mark.
        reason: Skip reason to store (e.g. "missing_name").
        embedding_version: Version of the pass that made the decision.

    Returns:
        Number of assets actually updated.
    """
    if not asset_ids:
        return 0

    stmt = (
        update(CatalogAsset)
        .where(CatalogAsset.id.in_(list(asset_ids)))
        .where(CatalogAsset.text_embedding.is_(None))
        .where(CatalogAsset.embedding_skip_reason.is_(None))
        .values(
            embedding_skip_reason=reason,
            embedding_version=embedding_version,
            embedding_updated_at=utcnow(),
        )
    )
    result = await session.execute(stmt)
    await session.commit()

    logger.debug("assets_marked_skipped", reason=reason, updated=result.rowcount)
    return int(result.rowcount or 0)


async def store_embeddings(
    session: AsyncSession,
    entries: Iterable[tuple[UUID, str, Sequence[float]]],
    embedding_version: int,
) -> int:
    """Store embeddings for assets that are still unembedded.

    Each write is conditional on the asset having no embedding yet, and
    clears any skip reason. All writes commit together.

    Args:
        session: Active async database session.
        entries: (asset_id, embedding_text, vector) triples.
        embedding_version: Version stamped on every stored embedding.

    Returns:
        Number of assets actually updated.
    """
    written = 0
    now = utcnow()

    for asset_id, embedding_text, vector in entries:
        stmt = (
            update(CatalogAsset)
            .where(CatalogAsset.id == asset_id)
            .where(CatalogAsset.text_embedding.is_(None))
            .values(
                text_embedding=list(vector),
                embedding_text=embedding_text,
                embedding_version=embedding_version,
                embedding_updated_at=now,
                embedding_skip_reason=None,
            )
        )
        result = await session.execute(stmt)
        written += int(result.rowcount or 0)

    await session.commit()
    return written


async def mark_reconciled(
    session: AsyncSession,
    asset_id: UUID,
    job_id: UUID,
    row_number: int,
) -> bool:
    """Flag an asset as reconciled, only if it is not flagged already.

    Args:
        session: Active async database session.
        asset_id: Asset confirmed as a match.
        job_id: Job in which the match was recorded.
        row_number: Legacy row number that was matched.

    Returns:
        True if the flag was set by this call, False if it was already set
        (or the asset does not exist).
    """
    stmt = (
        update(CatalogAsset)
        .where(CatalogAsset.id == asset_id)
        .where(CatalogAsset.is_reconciled.is_(False))
        .values(
            is_reconciled=True,
            reconciled_at=utcnow(),
            reconciled_job_id=job_id,
            reconciled_row_number=row_number,
        )
    )
    result = await session.execute(stmt)
    await session.commit()

    updated = bool(result.rowcount)
    logger.info(
        "asset_reconciled" if updated else "asset_already_reconciled",
        asset_id=str(asset_id),
        job_id=str(job_id),
        row_number=row_number,
    )
    return updated


async def get_reconciled_ids(
    session: AsyncSession,
    asset_ids: Iterable[UUID],
) -> set[UUID]:
    """Return the subset of the given assets that are flagged reconciled."""
    ids = list(asset_ids)
    if not ids:
        return set()

    stmt = (
        select(CatalogAsset.id)
        .where(CatalogAsset.id.in_(ids))
        .where(CatalogAsset.is_reconciled.is_(True))
    )
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def list_location_paths(
    session: AsyncSession,
    location_filter: LocationFilter | None = None,
) -> list[str]:
    """List distinct non-empty catalog location paths, sorted ascending.

    Args:
        session: Active async database session.
        location_filter: Optional subtree to restrict the listing to.
    """
    stmt = (
        select(CatalogAsset.location_path)
        .where(CatalogAsset.location_path.is_not(None))
        .where(CatalogAsset.location_path != "")
    )
    if location_filter is not None:
        stmt = stmt.where(location_filter.as_clause(CatalogAsset.location_path))
    stmt = stmt.distinct().order_by(CatalogAsset.location_path.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
