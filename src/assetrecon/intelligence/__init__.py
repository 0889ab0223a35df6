"""Text, embedding and retrieval subsystem for Assetrecon.

This module normalizes catalog and legacy text, generates embeddings through
an OpenAI-compatible provider, retrieves nearest catalog candidates, and
backfills embeddings across the catalog.
"""

from assetrecon.intelligence.backfill import (
    BackfillPreview,
    BackfillStats,
    EmbeddingBackfillPipeline,
    format_duration,
)
from assetrecon.intelligence.backoff import ExponentialBackoff
from assetrecon.intelligence.embeddings import (
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingClient,
)
from assetrecon.intelligence.location import LocationFilter, build_location_filter
from assetrecon.intelligence.retrieval import (
    CandidateRetriever,
    PgVectorSearchEngine,
    SearchHit,
    Suggestion,
    VectorSearchEngine,
)
from assetrecon.intelligence.text import (
    build_embedding_text,
    is_meaningful_value,
    normalize_text,
)

__all__ = [
    "BackfillPreview",
    "BackfillStats",
    "EmbeddingBackfillPipeline",
    "format_duration",
    "ExponentialBackoff",
    "EmbeddingProvider",
    "EmbeddingService",
    "OpenAIEmbeddingClient",
    "LocationFilter",
    "build_location_filter",
    "CandidateRetriever",
    "PgVectorSearchEngine",
    "SearchHit",
    "Suggestion",
    "VectorSearchEngine",
    "build_embedding_text",
    "is_meaningful_value",
    "normalize_text",
]
