"""
Fake implementations for testing.

Provides in-memory implementations of infrastructure interfaces
for use in unit and integration tests without external dependencies.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Sequence

from batchsearch.core.models import (
    BatchSearch,
    BatchSearchState,
    Document,
    FailureCause,
    SearchResult,
    User,
    can_transition,
)
from batchsearch.infrastructure.batch_store import (
    BatchSearchNotFound,
    BatchSearchRepository,
    InvalidStateTransition,
)
from batchsearch.infrastructure.index_client import (
    IndexSearchClient,
    SearchCursor,
    has_path_prefix,
)


class FakeClock:
    """
    Manually driven clock.

    ``sleep_ms`` advances time instead of blocking, and every call is
    recorded in ``sleeps``. ``step_ms`` is added on each ``now_ms`` call.
    """

    def __init__(self, start_ms: float = 0.0, step_ms: float = 0.0):
        self._now = start_ms
        self._step = step_ms
        self.sleeps: list[int] = []

    def now_ms(self) -> float:
        now = self._now
        self._now += self._step
        return now

    def sleep_ms(self, milliseconds: int) -> None:
        self.sleeps.append(milliseconds)
        self._now += milliseconds

    def advance(self, milliseconds: float) -> None:
        self._now += milliseconds


class InMemoryCursor(SearchCursor):
    """Cursor over precomputed pages, optionally failing at a given page."""

    def __init__(
        self,
        pages: list[list[Document]],
        error: BaseException | None = None,
        fail_at_page: int = 0,
    ):
        self._pages = [page for page in pages if page]
        self._error = error
        self._fail_at_page = fail_at_page
        self.pages_served = 0
        self.calls = 0
        self._exhausted = False

    def next_page(self) -> list[Document]:
        if self._error is not None and self.calls == self._fail_at_page:
            self.calls += 1
            raise self._error
        self.calls += 1
        if self._exhausted or self.pages_served >= len(self._pages):
            self._exhausted = True
            return []
        page = self._pages[self.pages_served]
        self.pages_served += 1
        return list(page)


class InMemoryIndexClient(IndexSearchClient):
    """
    In-memory index for testing.

    Documents are matched against their text content: a phrase query must
    appear verbatim, a fuzzy query matches any token, otherwise all tokens
    must be present. Queries can also be scripted with explicit pages.
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[tuple[Document, str]]] = {}
        self._scripted: dict[str, list[list[Document]]] = {}
        self._errors: dict[str, tuple[BaseException, int]] = {}
        self.searches: list[dict] = []
        self.cursors: list[InMemoryCursor] = []
        self.closed = False

    def add_document(self, collection: str, document: Document, content: str = "") -> None:
        self._collections.setdefault(collection, []).append((document, content))

    def script_query(self, query: str, pages: Sequence[Sequence[Document]]) -> None:
        """Serve exactly ``pages`` for ``query``, whatever the page size."""
        self._scripted[query] = [list(page) for page in pages]

    def fail_query(self, query: str, error: BaseException, at_page: int = 0) -> None:
        """Raise ``error`` on the ``at_page``-th fetch of ``query``."""
        self._errors[query] = (error, at_page)

    @staticmethod
    def _matches(content: str, query: str, fuzziness: int, phrase_matches: bool) -> bool:
        text = content.lower()
        if phrase_matches:
            return query.lower() in text
        tokens = set(text.split())
        terms = query.lower().split()
        if fuzziness > 0:
            return any(term in tokens for term in terms)
        return all(term in tokens for term in terms)

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
        self.searches.append(
            {
                "collection": collection,
                "query": query,
                "fuzziness": fuzziness,
                "phrase_matches": phrase_matches,
                "file_types": list(file_types),
                "paths": list(paths),
                "excluded_fields": list(excluded_fields),
                "page_size": page_size,
            }
        )

        if query in self._scripted:
            pages = self._scripted[query]
        else:
            hits = [
                doc
                for doc, content in self._collections.get(collection, [])
                if self._matches(content, query, fuzziness, phrase_matches)
                and (not file_types or doc.content_type in file_types)
                and has_path_prefix(doc.dirname, paths)
            ]
            pages = [hits[i:i + page_size] for i in range(0, len(hits), page_size)]

        error, at_page = self._errors.get(query, (None, 0))
        cursor = InMemoryCursor(pages, error=error, fail_at_page=at_page)
        self.cursors.append(cursor)
        return cursor

    def close(self) -> None:
        self.closed = True


class InMemoryBatchSearchRepository(BatchSearchRepository):
    """
    In-memory batch search repository for testing.

    Enforces the same transition table as the SQLite store and keeps a
    history of every state change.
    """

    def __init__(self) -> None:
        self._batch_searches: dict[str, BatchSearch] = {}
        self._results: list[SearchResult] = []
        self._lock = threading.Lock()
        self.state_history: list[tuple[str, BatchSearchState]] = []
        self.failures: dict[str, tuple[str | None, FailureCause]] = {}
        self.saved_pages: list[tuple[str, str, int]] = []
        self.closed = False

    def save(self, batch_search: BatchSearch) -> None:
        with self._lock:
            self._batch_searches[batch_search.uuid] = batch_search

    def get(self, batch_search_id: str) -> BatchSearch:
        with self._lock:
            if batch_search_id not in self._batch_searches:
                raise BatchSearchNotFound(batch_search_id)
            return self._batch_searches[batch_search_id]

    def get_queued(self) -> list[BatchSearch]:
        with self._lock:
            return [
                bs for bs in self._batch_searches.values()
                if bs.state == BatchSearchState.QUEUED
            ]

    def get_batch_searches(self, user: User) -> list[BatchSearch]:
        with self._lock:
            return [bs for bs in self._batch_searches.values() if bs.user == user]

    def _transition(self, batch_search_id: str, state: BatchSearchState, **changes) -> None:
        if batch_search_id not in self._batch_searches:
            raise BatchSearchNotFound(batch_search_id)
        current = self._batch_searches[batch_search_id]
        if not can_transition(current.state, state):
            raise InvalidStateTransition(batch_search_id, current.state, state)
        self._batch_searches[batch_search_id] = dataclasses.replace(
            current, state=state, **changes
        )
        self.state_history.append((batch_search_id, state))

    def set_state(self, batch_search_id: str, state: BatchSearchState) -> None:
        with self._lock:
            self._transition(batch_search_id, state)

    def set_failure(
        self, batch_search_id: str, query: str | None, cause: FailureCause
    ) -> None:
        with self._lock:
            self._transition(
                batch_search_id,
                BatchSearchState.FAILURE,
                error_message=cause.describe(),
                error_query=query,
            )
            self.failures[batch_search_id] = (query, cause)

    def save_results(
        self, batch_search_id: str, query: str, documents: Sequence[Document]
    ) -> None:
        with self._lock:
            current = self._batch_searches[batch_search_id]
            start = current.nb_results
            self._results.extend(
                SearchResult(batch_search_id, query, start + i, doc)
                for i, doc in enumerate(documents)
            )
            queries = dict(current.queries)
            queries[query] = queries.get(query, 0) + len(documents)
            self._batch_searches[batch_search_id] = dataclasses.replace(
                current, queries=queries, nb_results=start + len(documents)
            )
            self.saved_pages.append((batch_search_id, query, len(documents)))

    def get_results(
        self,
        batch_search_id: str,
        query: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[SearchResult]:
        with self._lock:
            results = [
                r for r in self._results
                if r.batch_search_id == batch_search_id and (query is None or r.query == query)
            ]
        end = None if limit is None else offset + limit
        return results[offset:end]

    def delete(self, batch_search_id: str) -> bool:
        with self._lock:
            if self._batch_searches.pop(batch_search_id, None) is None:
                return False
            self._results = [r for r in self._results if r.batch_search_id != batch_search_id]
            return True

    def close(self) -> None:
        self.closed = True
