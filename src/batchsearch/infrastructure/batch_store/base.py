"""
Batch search repository interface.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from batchsearch.core.models import (
    BatchSearch,
    BatchSearchState,
    Document,
    FailureCause,
    SearchResult,
    User,
)


class BatchSearchRepository(ABC):
    """
    Durable storage for batch searches and their results.

    Implementations enforce the lifecycle transition table and must make
    state changes and page writes safe for concurrent runners.
    """

    @abstractmethod
    def save(self, batch_search: BatchSearch) -> None:
        """Persist a newly submitted batch search."""
        pass

    @abstractmethod
    def get(self, batch_search_id: str) -> BatchSearch:
        """
        Get a batch search by id.

        Raises:
            BatchSearchNotFound: If no batch search has this id
        """
        pass

    @abstractmethod
    def get_queued(self) -> List[BatchSearch]:
        """Get all batch searches waiting to run, in submission order."""
        pass

    @abstractmethod
    def get_batch_searches(self, user: User) -> List[BatchSearch]:
        """Get the batch searches owned by ``user``."""
        pass

    @abstractmethod
    def set_state(self, batch_search_id: str, state: BatchSearchState) -> None:
        """
        Move a batch search to ``state``.

        Raises:
            BatchSearchNotFound: If no batch search has this id
            InvalidStateTransition: If the move is not allowed
        """
        pass

    @abstractmethod
    def set_failure(
        self, batch_search_id: str, query: Optional[str], cause: FailureCause
    ) -> None:
        """Move a running batch search to FAILURE, recording the cause and query."""
        pass

    @abstractmethod
    def save_results(
        self, batch_search_id: str, query: str, documents: Sequence[Document]
    ) -> None:
        """Append a page of results for ``query`` as one atomic write."""
        pass

    @abstractmethod
    def get_results(
        self,
        batch_search_id: str,
        query: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """Get persisted results, optionally for one query only."""
        pass

    @abstractmethod
    def delete(self, batch_search_id: str) -> bool:
        """Delete a batch search and its results. Returns True if deleted."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        pass
