"""
Batch search store module.

SQLite-based storage for batch searches, lifecycle state and result pages.
"""

from .base import BatchSearchRepository
from .models import BatchSearchNotFound, BatchSearchStoreError, InvalidStateTransition
from .queries import RESULT_COLUMNS, BatchSearchQueryExecutor
from .schema import initialize_schema
from .store import SQLiteBatchSearchRepository, create_batch_search_repository

__all__ = [
    # Main classes
    "BatchSearchRepository",
    "SQLiteBatchSearchRepository",
    # Errors
    "BatchSearchStoreError",
    "BatchSearchNotFound",
    "InvalidStateTransition",
    # Query executor
    "BatchSearchQueryExecutor",
    "RESULT_COLUMNS",
    # Schema
    "initialize_schema",
    # Factory
    "create_batch_search_repository",
]
