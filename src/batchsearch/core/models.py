"""
Domain models for batch searches.

Contains the batch search snapshot, its lifecycle states, retrieved
documents and the budget that caps how many results one batch search records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

# Each persisted result binds 9 fields, and a page is written as a single
# multi-row INSERT. SQLite allows at most 32766 bound parameters per
# statement, so a page must stay below 32766 / 9 (3640) documents.
MAX_SCROLL_SIZE = 3500
MAX_BATCH_RESULT_SIZE = 60000


class BatchSearchState(str, Enum):
    """Lifecycle state of a batch search."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchSearchState.SUCCESS, BatchSearchState.FAILURE)


ALLOWED_TRANSITIONS: Dict[BatchSearchState, frozenset] = {
    BatchSearchState.QUEUED: frozenset({BatchSearchState.RUNNING}),
    BatchSearchState.RUNNING: frozenset({BatchSearchState.SUCCESS, BatchSearchState.FAILURE}),
    BatchSearchState.SUCCESS: frozenset(),
    BatchSearchState.FAILURE: frozenset(),
}


def can_transition(current: BatchSearchState, target: BatchSearchState) -> bool:
    """Check whether a batch search may move from ``current`` to ``target``."""
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class User:
    """Owner of a batch search or of a runner."""

    id: str

    @classmethod
    def local(cls) -> "User":
        return cls("local")


@dataclass(frozen=True)
class Document:
    """A search hit, metadata only (the document body is never fetched)."""

    id: str
    path: str
    root_id: Optional[str] = None
    dirname: str = ""
    content_type: str = ""
    content_length: int = 0
    creation_date: Optional[datetime] = None
    metadata: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class BatchSearch:
    """
    Immutable snapshot of a submitted batch search.

    ``queries`` maps each query string to the number of results recorded for
    it. Insertion order is execution order.
    """

    uuid: str
    user: User
    project: str
    name: str
    queries: Dict[str, int]
    description: str = ""
    fuzziness: int = 0
    phrase_matches: bool = False
    file_types: List[str] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)
    state: BatchSearchState = BatchSearchState.QUEUED
    date: Optional[datetime] = None
    nb_results: int = 0
    error_message: Optional[str] = None
    error_query: Optional[str] = None


class FailureKind(str, Enum):
    """Classification of an error that ended a batch search."""

    TRANSPORT = "TRANSPORT"
    TIMEOUT = "TIMEOUT"
    GENERIC = "GENERIC"


@dataclass(frozen=True)
class FailureCause:
    """Classified cause of a batch search failure."""

    kind: FailureKind
    error: BaseException

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)

    def describe(self) -> str:
        """Render the cause the way it is persisted with the batch search."""
        return f"{self.error_type}: {self.message}" if self.message else self.error_type


@dataclass(frozen=True)
class SearchResult:
    """A persisted result row, as read back from the store."""

    batch_search_id: str
    query: str
    doc_nb: int
    document: Document


@dataclass
class BatchBudget:
    """
    Running result total shared by every query of one batch search.

    The total is never reset between queries. Once it reaches
    ``max_results - page_ceiling`` no further page is persisted for the
    batch search: later queries still open a cursor and fetch their first
    page, but that page is dropped without error. Callers rely on this cap
    to keep a batch search below ``max_results`` documents.
    """

    max_results: int = MAX_BATCH_RESULT_SIZE
    page_ceiling: int = MAX_SCROLL_SIZE
    consumed: int = 0

    def has_room(self) -> bool:
        return self.consumed < self.max_results - self.page_ceiling

    def consume(self, count: int) -> None:
        self.consumed += count
