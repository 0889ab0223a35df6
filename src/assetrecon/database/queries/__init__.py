"""Database query functions for Assetrecon.

This module provides async query functions for all database entities:
- Catalog asset reads, backfill scans and conditional embedding writes
- Reconciliation job and row lifecycle
"""

from assetrecon.database.queries.asset import (
    AssetCursor,
    count_assets,
    count_pending_embedding,
    create_asset,
    get_asset,
    get_assets_pending_embedding,
    get_reconciled_ids,
    list_location_paths,
    mark_embedding_skipped,
    mark_reconciled,
    store_embeddings,
)
from assetrecon.database.queries.job import (
    begin_processing,
    complete_job,
    count_rows_by_decision,
    create_job,
    delete_job,
    get_job,
    get_job_row,
    get_job_rows,
    get_matched_asset_ids,
    increment_processed_rows,
    list_jobs,
    set_row_decision,
    store_row_suggestions,
)

__all__ = [
    # Asset queries
    "AssetCursor",
    "create_asset",
    "get_asset",
    "count_assets",
    "count_pending_embedding",
    "get_assets_pending_embedding",
    "mark_embedding_skipped",
    "store_embeddings",
    "mark_reconciled",
    "get_reconciled_ids",
    "list_location_paths",
    # Job queries
    "create_job",
    "get_job",
    "get_job_rows",
    "get_job_row",
    "list_jobs",
    "begin_processing",
    "complete_job",
    "increment_processed_rows",
    "store_row_suggestions",
    "set_row_decision",
    "get_matched_asset_ids",
    "count_rows_by_decision",
    "delete_job",
]
