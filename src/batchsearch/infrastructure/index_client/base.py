"""
Index search client base types and interfaces.

Contains the abstract scroll cursor and client, and the exception raised
for backend failures.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from batchsearch.core.models import Document


class IndexSearchError(Exception):
    """
    Failure reported by the search backend.

    Attributes:
        status_code: HTTP-like status reported by the backend, if any
        causes: lower-level errors attached to this failure, most specific first
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        causes: Sequence[BaseException] = (),
    ):
        super().__init__(message)
        self.status_code = status_code
        self.causes: List[BaseException] = list(causes)


class SearchCursor(ABC):
    """
    Single-use scroll over the documents matching one query.

    Once ``next_page`` returns an empty list the cursor is exhausted and must
    not be used again.
    """

    @abstractmethod
    def next_page(self) -> List[Document]:
        """Fetch the next page of documents (empty when exhausted)."""
        pass


class IndexSearchClient(ABC):
    """Abstract interface for document index clients."""

    @abstractmethod
    def search(
        self,
        collection: str,
        query: str,
        fuzziness: int = 0,
        phrase_matches: bool = False,
        file_types: Sequence[str] = (),
        paths: Sequence[str] = (),
        excluded_fields: Sequence[str] = (),
        page_size: int = 1000,
    ) -> SearchCursor:
        """
        Open a scroll over the documents of ``collection`` matching ``query``.

        Args:
            collection: Collection (project) to search
            query: Query text
            fuzziness: Fuzziness level, 0 for exact term matching
            phrase_matches: Whether the query must match as a phrase
            file_types: Content types to keep (empty keeps all)
            paths: Directory prefixes to keep (empty keeps all)
            excluded_fields: Document fields left out of the results
            page_size: Maximum documents per page

        Returns:
            A fresh cursor positioned before the first page
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        pass
