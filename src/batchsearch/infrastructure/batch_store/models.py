"""
Exceptions for the batch search store.
"""

from batchsearch.core.models import BatchSearchState


class BatchSearchStoreError(Exception):
    """Base exception for batch search store errors."""
    pass


class BatchSearchNotFound(BatchSearchStoreError):
    """Raised when no batch search exists with the requested id."""

    def __init__(self, batch_search_id: str):
        super().__init__(f"Batch search not found: {batch_search_id}")
        self.batch_search_id = batch_search_id


class InvalidStateTransition(BatchSearchStoreError):
    """Raised when a state change is not allowed from the current state."""

    def __init__(
        self, batch_search_id: str, current: BatchSearchState, target: BatchSearchState
    ):
        super().__init__(
            f"Batch search {batch_search_id} cannot go from {current.value} to {target.value}"
        )
        self.batch_search_id = batch_search_id
        self.current = current
        self.target = target
