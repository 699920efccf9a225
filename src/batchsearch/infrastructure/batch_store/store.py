"""
Batch search store implementation.

SQLite-based storage for batch searches, their lifecycle state and results.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from batchsearch.core.models import (
    MAX_SCROLL_SIZE,
    BatchSearch,
    BatchSearchState,
    Document,
    FailureCause,
    SearchResult,
    User,
    can_transition,
)

from .base import BatchSearchRepository
from .models import BatchSearchNotFound, BatchSearchStoreError, InvalidStateTransition
from .queries import BatchSearchQueryExecutor, _now_with_tz
from .schema import initialize_schema

logger = logging.getLogger(__name__)


def _sources_for(target: BatchSearchState) -> List[str]:
    """States from which ``target`` can be reached."""
    return [state.value for state in BatchSearchState if can_transition(state, target)]


class SQLiteBatchSearchRepository(BatchSearchRepository):
    """
    SQLite-based batch search storage.

    One connection is shared by all callers and guarded by a lock, so a
    runner thread and a monitoring thread can use the same repository.
    """

    def __init__(self, db_path: Path | str):
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._query: Optional[BatchSearchQueryExecutor] = None
        self._initialized = False
        self._lock = threading.RLock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA busy_timeout=5000;")
            self._query = BatchSearchQueryExecutor(self._conn)
        return self._conn

    def initialize(self) -> None:
        """Initialize the database schema."""
        if self._initialized:
            return
        conn = self._get_connection()
        try:
            initialize_schema(conn)
            self._initialized = True
            logger.info(f"Initialized batch search store: {self._db_path}")
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to initialize schema: {e}") from e

    def _ensure_query(self) -> BatchSearchQueryExecutor:
        """Ensure query executor is available."""
        self.initialize()
        assert self._query is not None
        return self._query

    def _to_batch_search(self, row: sqlite3.Row) -> BatchSearch:
        queries = {
            q["query"]: q["query_results"] for q in self._ensure_query().get_queries(row["uuid"])
        }
        return BatchSearch(
            uuid=row["uuid"],
            user=User(row["user_id"]),
            project=row["project_id"],
            name=row["name"],
            description=row["description"],
            queries=queries,
            fuzziness=row["fuzziness"],
            phrase_matches=bool(row["phrase_matches"]),
            file_types=json.loads(row["file_types"]),
            paths=json.loads(row["paths"]),
            state=BatchSearchState(row["state"]),
            date=datetime.fromisoformat(row["batch_date"]) if row["batch_date"] else None,
            nb_results=row["nb_results"],
            error_message=row["error_message"],
            error_query=row["error_query"],
        )

    # ─────────────────────────────────────────────────────────────────
    # Batch Search Operations
    # ─────────────────────────────────────────────────────────────────

    def save(self, batch_search: BatchSearch) -> None:
        date = batch_search.date or _now_with_tz()
        try:
            with self._lock:
                self._ensure_query().insert_batch_search(
                    (
                        batch_search.uuid,
                        batch_search.user.id,
                        batch_search.project,
                        batch_search.name,
                        batch_search.description,
                        batch_search.state.value,
                        batch_search.fuzziness,
                        int(batch_search.phrase_matches),
                        json.dumps(list(batch_search.file_types)),
                        json.dumps(list(batch_search.paths)),
                        date.isoformat(),
                        batch_search.nb_results,
                        batch_search.error_message,
                        batch_search.error_query,
                    ),
                    [
                        (number, query, results)
                        for number, (query, results) in enumerate(batch_search.queries.items())
                    ],
                )
            logger.debug(f"Saved batch search {batch_search.uuid}")
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to save batch search: {e}") from e

    def get(self, batch_search_id: str) -> BatchSearch:
        try:
            with self._lock:
                row = self._ensure_query().get_batch_search(batch_search_id)
                if row is None:
                    raise BatchSearchNotFound(batch_search_id)
                return self._to_batch_search(row)
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to get batch search: {e}") from e

    def get_queued(self) -> List[BatchSearch]:
        try:
            with self._lock:
                rows = self._ensure_query().get_batch_searches_by_state(
                    BatchSearchState.QUEUED.value
                )
                return [self._to_batch_search(row) for row in rows]
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to get queued batch searches: {e}") from e

    def get_batch_searches(self, user: User) -> List[BatchSearch]:
        try:
            with self._lock:
                rows = self._ensure_query().get_batch_searches_by_user(user.id)
                return [self._to_batch_search(row) for row in rows]
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to get batch searches: {e}") from e

    def _check_transition(self, batch_search_id: str, target: BatchSearchState) -> None:
        """Raise the right error after a guarded update matched no row."""
        current = self._ensure_query().get_state(batch_search_id)
        if current is None:
            raise BatchSearchNotFound(batch_search_id)
        raise InvalidStateTransition(batch_search_id, BatchSearchState(current), target)

    def set_state(self, batch_search_id: str, state: BatchSearchState) -> None:
        try:
            with self._lock:
                updated = self._ensure_query().update_state(
                    batch_search_id, state.value, _sources_for(state)
                )
                if updated == 0:
                    self._check_transition(batch_search_id, state)
            logger.debug(f"Batch search {batch_search_id} is now {state.value}")
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to set state: {e}") from e

    def set_failure(
        self, batch_search_id: str, query: Optional[str], cause: FailureCause
    ) -> None:
        target = BatchSearchState.FAILURE
        try:
            with self._lock:
                updated = self._ensure_query().update_failure(
                    batch_search_id,
                    target.value,
                    _sources_for(target),
                    cause.describe(),
                    query,
                )
                if updated == 0:
                    self._check_transition(batch_search_id, target)
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to set failure: {e}") from e

    def delete(self, batch_search_id: str) -> bool:
        try:
            with self._lock:
                return self._ensure_query().delete_batch_search(batch_search_id) > 0
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to delete batch search: {e}") from e

    # ─────────────────────────────────────────────────────────────────
    # Result Operations
    # ─────────────────────────────────────────────────────────────────

    def save_results(
        self, batch_search_id: str, query: str, documents: Sequence[Document]
    ) -> None:
        if len(documents) > MAX_SCROLL_SIZE:
            raise BatchSearchStoreError(
                f"Cannot save {len(documents)} results at once (max {MAX_SCROLL_SIZE})"
            )
        try:
            with self._lock:
                self._ensure_query().insert_results_page(
                    batch_search_id,
                    query,
                    [
                        (
                            doc.id,
                            doc.root_id,
                            doc.path,
                            doc.creation_date.isoformat() if doc.creation_date else None,
                            doc.content_type,
                            doc.content_length,
                        )
                        for doc in documents
                    ],
                )
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to save results: {e}") from e

    def get_results(
        self,
        batch_search_id: str,
        query: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        try:
            with self._lock:
                rows = self._ensure_query().get_results(batch_search_id, query, offset, limit)
            return [
                SearchResult(
                    batch_search_id=row["search_uuid"],
                    query=row["query"],
                    doc_nb=row["doc_nb"],
                    document=Document(
                        id=row["doc_id"],
                        root_id=row["root_id"],
                        path=row["doc_path"],
                        content_type=row["content_type"] or "",
                        content_length=row["content_length"] or 0,
                        creation_date=(
                            datetime.fromisoformat(row["creation_date"])
                            if row["creation_date"]
                            else None
                        ),
                    ),
                )
                for row in rows
            ]
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to get results: {e}") from e

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def clear_all(self) -> None:
        """Clear all data from the store."""
        try:
            with self._lock:
                self._ensure_query().clear_all()
        except sqlite3.Error as e:
            raise BatchSearchStoreError(f"Failed to clear data: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                self._query = None
                self._initialized = False


def create_batch_search_repository(db_path: Path | str) -> SQLiteBatchSearchRepository:
    """Factory function to create a batch search repository."""
    return SQLiteBatchSearchRepository(db_path)
