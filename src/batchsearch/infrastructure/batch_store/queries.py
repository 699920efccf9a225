"""
Low-level SQL query executor for the batch search store.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

# Columns bound for each persisted result
RESULT_COLUMNS = (
    "search_uuid",
    "query",
    "doc_nb",
    "doc_id",
    "root_id",
    "doc_path",
    "creation_date",
    "content_type",
    "content_length",
)

_BATCH_SEARCH_COLUMNS = """
    uuid, user_id, project_id, name, description, state, fuzziness,
    phrase_matches, file_types, paths, batch_date, nb_results,
    error_message, error_query
"""


def _now_with_tz() -> datetime:
    """Get current datetime with local timezone."""
    return datetime.now().astimezone()


class BatchSearchQueryExecutor:
    """Executes SQL queries for the batch search store."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    # ─────────────────────────────────────────────────────────────────
    # Batch Search Operations
    # ─────────────────────────────────────────────────────────────────

    def insert_batch_search(
        self,
        row: Tuple,
        queries: Sequence[Tuple[int, str, int]],
    ) -> None:
        """Insert a batch search with its queries in one transaction."""
        try:
            self._conn.execute(
                f"INSERT INTO batch_search ({_BATCH_SEARCH_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                row,
            )
            self._conn.executemany(
                """
                INSERT INTO batch_search_query (search_uuid, query_number, query, query_results)
                VALUES (?, ?, ?, ?)
                """,
                [(row[0], number, query, results) for number, query, results in queries],
            )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise

    def get_batch_search(self, uuid: str) -> Optional[sqlite3.Row]:
        """Get a single batch search by uuid."""
        cursor = self._conn.execute(
            f"SELECT {_BATCH_SEARCH_COLUMNS} FROM batch_search WHERE uuid = ?",
            (uuid,),
        )
        return cursor.fetchone()

    def get_batch_searches_by_state(self, state: str) -> List[sqlite3.Row]:
        """Get batch searches in a state, oldest first."""
        cursor = self._conn.execute(
            f"""
            SELECT {_BATCH_SEARCH_COLUMNS} FROM batch_search
            WHERE state = ?
            ORDER BY batch_date, rowid
            """,
            (state,),
        )
        return cursor.fetchall()

    def get_batch_searches_by_user(self, user_id: str) -> List[sqlite3.Row]:
        """Get the batch searches of a user, newest first."""
        cursor = self._conn.execute(
            f"""
            SELECT {_BATCH_SEARCH_COLUMNS} FROM batch_search
            WHERE user_id = ?
            ORDER BY batch_date DESC, rowid DESC
            """,
            (user_id,),
        )
        return cursor.fetchall()

    def get_queries(self, uuid: str) -> List[sqlite3.Row]:
        """Get the queries of a batch search in execution order."""
        cursor = self._conn.execute(
            """
            SELECT query, query_results FROM batch_search_query
            WHERE search_uuid = ?
            ORDER BY query_number
            """,
            (uuid,),
        )
        return cursor.fetchall()

    def get_state(self, uuid: str) -> Optional[str]:
        """Get the current state of a batch search."""
        row = self._conn.execute(
            "SELECT state FROM batch_search WHERE uuid = ?", (uuid,)
        ).fetchone()
        return row["state"] if row else None

    def update_state(self, uuid: str, target: str, sources: Sequence[str]) -> int:
        """Move a batch search to ``target`` if it is in one of ``sources``."""
        placeholders = ", ".join("?" for _ in sources)
        cursor = self._conn.execute(
            f"UPDATE batch_search SET state = ? WHERE uuid = ? AND state IN ({placeholders})",
            (target, uuid, *sources),
        )
        self._conn.commit()
        return cursor.rowcount

    def update_failure(
        self,
        uuid: str,
        target: str,
        sources: Sequence[str],
        error_message: str,
        error_query: Optional[str],
    ) -> int:
        """Move a batch search to a failure state and record its cause."""
        placeholders = ", ".join("?" for _ in sources)
        cursor = self._conn.execute(
            f"""
            UPDATE batch_search SET state = ?, error_message = ?, error_query = ?
            WHERE uuid = ? AND state IN ({placeholders})
            """,
            (target, error_message, error_query, uuid, *sources),
        )
        self._conn.commit()
        return cursor.rowcount

    def delete_batch_search(self, uuid: str) -> int:
        """Delete a batch search with its queries and results, returns rowcount."""
        try:
            self._conn.execute("DELETE FROM batch_search_result WHERE search_uuid = ?", (uuid,))
            self._conn.execute("DELETE FROM batch_search_query WHERE search_uuid = ?", (uuid,))
            cursor = self._conn.execute("DELETE FROM batch_search WHERE uuid = ?", (uuid,))
            self._conn.commit()
            return cursor.rowcount
        except sqlite3.Error:
            self._conn.rollback()
            raise

    # ─────────────────────────────────────────────────────────────────
    # Result Operations
    # ─────────────────────────────────────────────────────────────────

    def insert_results_page(
        self,
        uuid: str,
        query: str,
        documents: Sequence[Tuple],
    ) -> int:
        """
        Append a page of results as a single multi-row INSERT.

        ``documents`` holds (doc_id, root_id, doc_path, creation_date,
        content_type, content_length) tuples. Document numbers continue
        from the batch search's current result count.

        Returns:
            Number of rows inserted
        """
        if not documents:
            return 0
        try:
            self._conn.execute("BEGIN IMMEDIATE")
            row = self._conn.execute(
                "SELECT nb_results FROM batch_search WHERE uuid = ?", (uuid,)
            ).fetchone()
            start = row["nb_results"] if row else 0

            values = []
            for offset, doc in enumerate(documents):
                values.extend((uuid, query, start + offset, *doc))
            row_placeholders = "(" + ", ".join("?" for _ in RESULT_COLUMNS) + ")"
            self._conn.execute(
                f"INSERT INTO batch_search_result ({', '.join(RESULT_COLUMNS)}) VALUES "
                + ", ".join(row_placeholders for _ in documents),
                values,
            )
            self._conn.execute(
                """
                UPDATE batch_search_query SET query_results = query_results + ?
                WHERE search_uuid = ? AND query = ?
                """,
                (len(documents), uuid, query),
            )
            self._conn.execute(
                "UPDATE batch_search SET nb_results = nb_results + ? WHERE uuid = ?",
                (len(documents), uuid),
            )
            self._conn.commit()
            return len(documents)
        except sqlite3.Error:
            self._conn.rollback()
            raise

    def get_results(
        self,
        uuid: str,
        query: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[sqlite3.Row]:
        """Get persisted results ordered by document number."""
        sql = f"SELECT {', '.join(RESULT_COLUMNS)} FROM batch_search_result WHERE search_uuid = ?"
        params: list = [uuid]
        if query is not None:
            sql += " AND query = ?"
            params.append(query)
        sql += " ORDER BY doc_nb LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, offset])
        return self._conn.execute(sql, params).fetchall()

    def clear_all(self) -> None:
        """Delete all rows from all tables."""
        self._conn.execute("DELETE FROM batch_search_result")
        self._conn.execute("DELETE FROM batch_search_query")
        self._conn.execute("DELETE FROM batch_search")
        self._conn.commit()
