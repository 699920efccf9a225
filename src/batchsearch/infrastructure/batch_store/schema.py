"""
Batch search store schema definitions.
"""

import sqlite3

SCHEMA = """
-- Submitted batch searches
CREATE TABLE IF NOT EXISTS batch_search (
    uuid TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    project_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    state TEXT NOT NULL,
    fuzziness INTEGER NOT NULL DEFAULT 0,
    phrase_matches INTEGER NOT NULL DEFAULT 0,
    file_types TEXT NOT NULL DEFAULT '[]',
    paths TEXT NOT NULL DEFAULT '[]',
    batch_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    nb_results INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    error_query TEXT
);

-- Queries of a batch search, in execution order
CREATE TABLE IF NOT EXISTS batch_search_query (
    search_uuid TEXT NOT NULL,
    query_number INTEGER NOT NULL,
    query TEXT NOT NULL,
    query_results INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (search_uuid, query)
);

-- Persisted result pages
CREATE TABLE IF NOT EXISTS batch_search_result (
    search_uuid TEXT NOT NULL,
    query TEXT NOT NULL,
    doc_nb INTEGER NOT NULL,
    doc_id TEXT NOT NULL,
    root_id TEXT,
    doc_path TEXT NOT NULL,
    creation_date TIMESTAMP,
    content_type TEXT,
    content_length INTEGER,
    PRIMARY KEY (search_uuid, doc_nb)
);

-- Indexes for efficient queries
CREATE INDEX IF NOT EXISTS idx_batch_search_state
    ON batch_search(state);
CREATE INDEX IF NOT EXISTS idx_batch_search_user
    ON batch_search(user_id);
CREATE INDEX IF NOT EXISTS idx_batch_search_result_query
    ON batch_search_result(search_uuid, query);
"""


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript(SCHEMA)
    conn.commit()
