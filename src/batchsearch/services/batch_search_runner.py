"""
Batch search runner.

Pulls queued batch searches from the repository, scrolls the index for each
of their queries and stores result pages as they arrive, under a per-page
throttle and a per-query run-time budget.
"""

import logging
import threading
from typing import Optional, Protocol

from batchsearch.core.clock import Clock, SystemClock
from batchsearch.core.config import (
    BATCH_SEARCH_MAX_TIME,
    BATCH_SEARCH_THROTTLE,
    SCROLL_SIZE,
    PropertiesProvider,
)
from batchsearch.core.models import (
    MAX_BATCH_RESULT_SIZE,
    MAX_SCROLL_SIZE,
    BatchBudget,
    BatchSearch,
    BatchSearchState,
    FailureKind,
    User,
)
from batchsearch.infrastructure.batch_store import (
    BatchSearchRepository,
    BatchSearchStoreError,
    InvalidStateTransition,
)
from batchsearch.infrastructure.index_client import IndexSearchClient
from batchsearch.services.failure_classifier import BatchSearchTimeout, classify_failure

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_MS = "0"
DEFAULT_MAX_TIME_SECONDS = "100000"
DEFAULT_SCROLL_SIZE = "1000"


class Monitorable(Protocol):
    """Something whose progress can be polled from another thread."""

    @property
    def progress_rate(self) -> float:
        ...

    @property
    def user(self) -> User:
        ...


class RunProgress:
    """
    Progress counters of one runner.

    Written by the thread running the batch searches, read by any number of
    monitoring threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._processed = 0

    def start(self, total: int) -> None:
        with self._lock:
            self._total = total

    def advance(self) -> None:
        with self._lock:
            self._processed += 1

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def rate(self) -> float:
        with self._lock:
            if self._total == 0:
                return 0.0
            return self._processed / self._total


class BatchSearchRunner:
    """
    Runs queued batch searches for one user.

    A runner is a unit of work for an executor: call it (or ``run_all``) to
    process every queued batch search. Runs are synchronous and strictly
    sequential; only ``progress_rate`` and ``user`` are meant to be read
    from other threads.

    Attributes:
        MAX_SCROLL_SIZE: hard page size ceiling, see ``core.models``
        MAX_BATCH_RESULT_SIZE: most results recorded for one batch search
    """

    MAX_SCROLL_SIZE = MAX_SCROLL_SIZE
    MAX_BATCH_RESULT_SIZE = MAX_BATCH_RESULT_SIZE

    def __init__(
        self,
        index_client: IndexSearchClient,
        repository: BatchSearchRepository,
        properties: PropertiesProvider,
        user: User,
        clock: Optional[Clock] = None,
    ):
        self._index_client = index_client
        self._repository = repository
        self._properties = properties
        self._user = user
        self._clock = clock or SystemClock()
        self._progress = RunProgress()
        self._closed = False

    def __call__(self) -> int:
        return self.run_all()

    def __enter__(self) -> "BatchSearchRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def user(self) -> User:
        return self._user

    @property
    def progress_rate(self) -> float:
        return self._progress.rate

    @property
    def progress(self) -> RunProgress:
        return self._progress

    def run_all(self) -> int:
        """
        Run every queued batch search, in repository order.

        Returns:
            Total number of results recorded across all batch searches
        """
        batch_searches = self._repository.get_queued()
        self._progress.start(len(batch_searches))
        logger.info(f"found {len(batch_searches)} queued batch searches")

        total_results = 0
        for batch_search in batch_searches:
            try:
                total_results += self.run(batch_search)
            except Exception as e:
                logger.error(
                    f"unrecorded failure of batch search {batch_search.uuid}: {e}",
                    exc_info=True,
                )
            finally:
                self._progress.advance()

        logger.info(f"done {len(batch_searches)} batch searches")
        return total_results

    def run_one(self, batch_search_id: str) -> int:
        """
        Run a single batch search if it is still queued.

        Returns 0 without touching the batch search when it is running or
        already finished, so retriggering is safe.

        Raises:
            BatchSearchNotFound: If no batch search has this id
        """
        batch_search = self._repository.get(batch_search_id)
        if batch_search.state != BatchSearchState.QUEUED:
            logger.info(
                f"batch search {batch_search_id} is {batch_search.state.value}, skipping"
            )
            return 0
        return self.run(batch_search)

    def _resolve_settings(self) -> tuple[int, int, int]:
        throttle_ms = int(self._properties.get(BATCH_SEARCH_THROTTLE) or DEFAULT_THROTTLE_MS)
        max_time_seconds = int(
            self._properties.get(BATCH_SEARCH_MAX_TIME) or DEFAULT_MAX_TIME_SECONDS
        )
        scroll_size = min(
            int(self._properties.get(SCROLL_SIZE) or DEFAULT_SCROLL_SIZE), self.MAX_SCROLL_SIZE
        )
        return throttle_ms, max_time_seconds, scroll_size

    def run(self, batch_search: BatchSearch) -> int:
        """
        Run the queries of a queued batch search and record their results.

        Failures are stored as the FAILURE state with the query that was
        running, and the results saved so far are kept. A failure to mark the
        batch search SUCCESS is recorded the same way, without a query. Only
        an error while recording the failure itself propagates.

        Returns:
            Number of results counted for this batch search. A page saved
            right before a timeout is stored but not counted.
        """
        throttle_ms, max_time_seconds, scroll_size = self._resolve_settings()
        logger.info(
            f"running {len(batch_search.queries)} queries for batch search {batch_search.uuid} "
            f"on project {batch_search.project} with throttle {throttle_ms}ms "
            f"and scroll size of {scroll_size}"
        )

        try:
            self._repository.set_state(batch_search.uuid, BatchSearchState.RUNNING)
        except InvalidStateTransition as e:
            logger.warning(f"batch search {batch_search.uuid} not started: {e}")
            return 0
        except BatchSearchStoreError as e:
            logger.error(
                f"batch search {batch_search.uuid} could not be started: {e}", exc_info=True
            )
            return 0

        budget = BatchBudget(self.MAX_BATCH_RESULT_SIZE, self.MAX_SCROLL_SIZE)
        query: Optional[str] = None
        try:
            for query in batch_search.queries:
                cursor = self._index_client.search(
                    batch_search.project,
                    query,
                    fuzziness=batch_search.fuzziness,
                    phrase_matches=batch_search.phrase_matches,
                    file_types=batch_search.file_types,
                    paths=batch_search.paths,
                    excluded_fields=["content"],
                    page_size=scroll_size,
                )
                documents = cursor.next_page()

                started_ms = self._clock.now_ms()
                while documents and budget.has_room():
                    self._repository.save_results(batch_search.uuid, query, documents)
                    if self._clock.now_ms() - started_ms < max_time_seconds * 1000:
                        self._clock.sleep_ms(throttle_ms)
                    else:
                        raise BatchSearchTimeout(max_time_seconds)
                    budget.consume(len(documents))
                    documents = cursor.next_page()

            query = None
            self._repository.set_state(batch_search.uuid, BatchSearchState.SUCCESS)
        except Exception as e:
            cause = classify_failure(e)
            if cause.kind == FailureKind.TRANSPORT:
                logger.error(
                    f"search backend error when running batch {batch_search.uuid} "
                    f"(query '{query}'): {cause.describe()}",
                    exc_info=True,
                )
            else:
                logger.error(
                    f"error when running batch {batch_search.uuid} (query '{query}'): {e}",
                    exc_info=True,
                )
            self._repository.set_failure(batch_search.uuid, query, cause)
            return budget.consumed

        logger.info(f"done batch search {batch_search.uuid} with success")
        return budget.consumed

    def close(self) -> None:
        """Release the index client and the repository."""
        if self._closed:
            return
        self._closed = True
        self._index_client.close()
        self._repository.close()
