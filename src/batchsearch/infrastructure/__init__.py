"""
Infrastructure Layer - Index search client and batch search store implementations.
"""

from batchsearch.infrastructure.batch_store import (
    BatchSearchNotFound,
    BatchSearchRepository,
    BatchSearchStoreError,
    InvalidStateTransition,
    SQLiteBatchSearchRepository,
    create_batch_search_repository,
)
from batchsearch.infrastructure.fakes import (
    FakeClock,
    InMemoryBatchSearchRepository,
    InMemoryIndexClient,
)
from batchsearch.infrastructure.index_client import (
    IndexSearchClient,
    IndexSearchError,
    QdrantIndexClient,
    SearchCursor,
    create_index_client,
)

__all__ = [
    # Index search client
    "IndexSearchClient",
    "SearchCursor",
    "QdrantIndexClient",
    "IndexSearchError",
    "create_index_client",
    # Batch search store
    "BatchSearchRepository",
    "SQLiteBatchSearchRepository",
    "BatchSearchStoreError",
    "BatchSearchNotFound",
    "InvalidStateTransition",
    "create_batch_search_repository",
    # Fakes for testing
    "InMemoryIndexClient",
    "InMemoryBatchSearchRepository",
    "FakeClock",
]
