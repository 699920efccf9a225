"""
Scenario tests for BatchSearchRunner.

Runs batch searches over in-memory fakes and checks states, returned
totals and persisted pages.
"""

import threading

import httpx
import pytest
from qdrant_client.http.exceptions import UnexpectedResponse

from batchsearch.core.config import BATCH_SEARCH_MAX_TIME, BATCH_SEARCH_THROTTLE, SCROLL_SIZE
from batchsearch.core.models import (
    MAX_BATCH_RESULT_SIZE,
    MAX_SCROLL_SIZE,
    BatchSearchState,
    Document,
    FailureKind,
    User,
)
from batchsearch.infrastructure import (
    BatchSearchNotFound,
    BatchSearchStoreError,
    IndexSearchError,
    SQLiteBatchSearchRepository,
)
from batchsearch.infrastructure.fakes import (
    FakeClock,
    InMemoryBatchSearchRepository,
    InMemoryIndexClient,
)
from batchsearch.services import BatchSearchTimeout
from tests.batch_search_test_utils import make_batch_search, make_docs, make_runner


@pytest.fixture
def index_client() -> InMemoryIndexClient:
    return InMemoryIndexClient()


@pytest.fixture
def repository() -> InMemoryBatchSearchRepository:
    return InMemoryBatchSearchRepository()


def _unexpected_response(status: int = 503) -> UnexpectedResponse:
    return UnexpectedResponse(status, "Service Unavailable", b'{"status": "error"}', httpx.Headers())


class TestRunAll:
    def test_two_queries_one_page_each(self, index_client, repository):
        index_client.script_query("q1", [make_docs("a", 5)])
        index_client.script_query("q2", [make_docs("b", 5)])
        batch = make_batch_search(["q1", "q2"])
        repository.save(batch)

        runner = make_runner(index_client, repository, **{BATCH_SEARCH_THROTTLE: 0})
        assert runner.run_all() == 10

        assert repository.get(batch.uuid).state == BatchSearchState.SUCCESS
        assert repository.state_history == [
            (batch.uuid, BatchSearchState.RUNNING),
            (batch.uuid, BatchSearchState.SUCCESS),
        ]
        assert len(repository.get_results(batch.uuid)) == 10
        assert len(repository.get_results(batch.uuid, query="q1")) == 5
        assert len(repository.get_results(batch.uuid, query="q2")) == 5
        assert repository.get(batch.uuid).queries == {"q1": 5, "q2": 5}

    def test_matches_documents_by_content_and_filters(self, index_client, repository):
        doc_pdf = Document(id="1", path="/data/a/1.pdf", dirname="/data/a", content_type="application/pdf")
        doc_txt = Document(id="2", path="/data/a/2.txt", dirname="/data/a", content_type="text/plain")
        doc_other = Document(id="3", path="/other/3.pdf", dirname="/other", content_type="application/pdf")
        for doc in (doc_pdf, doc_txt, doc_other):
            index_client.add_document("local-datashare", doc, content="the secret offshore account")
        batch = make_batch_search(
            ["offshore"], file_types=["application/pdf"], paths=["/data"]
        )
        repository.save(batch)

        assert make_runner(index_client, repository).run_all() == 1
        results = repository.get_results(batch.uuid)
        assert [r.document.id for r in results] == ["1"]

    def test_search_is_opened_with_batch_options(self, index_client, repository):
        batch = make_batch_search(
            ["foo bar"], fuzziness=2, phrase_matches=True, file_types=["text/plain"], paths=["/x"]
        )
        repository.save(batch)

        make_runner(index_client, repository, **{SCROLL_SIZE: 50}).run_all()

        assert index_client.searches == [
            {
                "collection": "local-datashare",
                "query": "foo bar",
                "fuzziness": 2,
                "phrase_matches": True,
                "file_types": ["text/plain"],
                "paths": ["/x"],
                "excluded_fields": ["content"],
                "page_size": 50,
            }
        ]

    def test_default_page_size(self, index_client, repository):
        repository.save(make_batch_search(["q"]))
        make_runner(index_client, repository).run_all()
        assert index_client.searches[0]["page_size"] == 1000

    def test_page_size_is_clamped_to_ceiling(self, index_client, repository):
        repository.save(make_batch_search(["q"]))
        make_runner(index_client, repository, **{SCROLL_SIZE: 100000}).run_all()
        assert index_client.searches[0]["page_size"] == MAX_SCROLL_SIZE

    def test_query_with_no_result_succeeds(self, index_client, repository):
        batch = make_batch_search(["nothing"])
        repository.save(batch)

        assert make_runner(index_client, repository).run_all() == 0
        assert repository.get(batch.uuid).state == BatchSearchState.SUCCESS
        assert repository.saved_pages == []

    def test_failure_does_not_stop_next_batch_searches(self, index_client, repository):
        index_client.fail_query("broken", RuntimeError("boom"))
        index_client.script_query("ok", [make_docs("a", 3)])
        failing = make_batch_search(["broken"])
        working = make_batch_search(["ok"])
        repository.save(failing)
        repository.save(working)

        runner = make_runner(index_client, repository)
        assert runner.run_all() == 3

        assert repository.get(failing.uuid).state == BatchSearchState.FAILURE
        assert repository.get(working.uuid).state == BatchSearchState.SUCCESS
        assert runner.progress_rate == 1.0

    def test_only_queued_batch_searches_are_pulled(self, index_client, repository):
        index_client.script_query("q", [make_docs("a", 2)])
        queued = make_batch_search(["q"])
        done = make_batch_search(["q"], state=BatchSearchState.SUCCESS)
        repository.save(queued)
        repository.save(done)

        runner = make_runner(index_client, repository)
        assert runner.run_all() == 2
        assert runner.progress.total == 1
        assert repository.get_results(done.uuid) == []

    def test_runner_is_callable(self, index_client, repository):
        index_client.script_query("q", [make_docs("a", 4)])
        repository.save(make_batch_search(["q"]))
        assert make_runner(index_client, repository)() == 4

    def test_two_queries_with_sqlite_store(self, index_client, tmp_path):
        repository = SQLiteBatchSearchRepository(tmp_path / "batch_search.db")
        index_client.script_query("q1", [make_docs("a", 5)])
        index_client.script_query("q2", [make_docs("b", 5)])
        batch = make_batch_search(["q1", "q2"])
        repository.save(batch)

        with make_runner(index_client, repository) as runner:
            assert runner.run_all() == 10
            stored = repository.get(batch.uuid)
            assert stored.state == BatchSearchState.SUCCESS
            assert stored.queries == {"q1": 5, "q2": 5}
            assert [r.doc_nb for r in repository.get_results(batch.uuid)] == list(range(10))


class TestResultCap:
    def test_results_stop_below_batch_maximum(self, index_client, repository):
        pages = [make_docs(f"p{i}", MAX_SCROLL_SIZE) for i in range(18)]
        index_client.script_query("a", pages)
        index_client.script_query("b", [make_docs("b", 10)])
        batch = make_batch_search(["a", "b"])
        repository.save(batch)

        assert make_runner(index_client, repository).run_all() == 17 * MAX_SCROLL_SIZE

        stored = repository.get(batch.uuid)
        assert stored.state == BatchSearchState.SUCCESS
        assert stored.queries == {"a": 17 * MAX_SCROLL_SIZE, "b": 0}
        assert stored.nb_results < MAX_BATCH_RESULT_SIZE
        # The second query still opens a cursor and reads one page
        assert index_client.cursors[1].calls == 1
        assert all(query == "a" for _, query, _ in repository.saved_pages)


class TestRunOne:
    @pytest.mark.parametrize(
        "state",
        [BatchSearchState.RUNNING, BatchSearchState.SUCCESS, BatchSearchState.FAILURE],
    )
    def test_not_queued_is_a_no_op(self, index_client, repository, state):
        index_client.script_query("q", [make_docs("a", 4)])
        batch = make_batch_search(["q"], state=state)
        repository.save(batch)

        assert make_runner(index_client, repository).run_one(batch.uuid) == 0
        assert repository.state_history == []
        assert repository.saved_pages == []
        assert index_client.searches == []

    def test_queued_is_run(self, index_client, repository):
        index_client.script_query("q", [make_docs("a", 4), make_docs("b", 2)])
        batch = make_batch_search(["q"])
        repository.save(batch)

        assert make_runner(index_client, repository).run_one(batch.uuid) == 6
        assert repository.get(batch.uuid).state == BatchSearchState.SUCCESS

    def test_running_twice_does_not_double_results(self, index_client, repository):
        index_client.script_query("q", [make_docs("a", 4)])
        batch = make_batch_search(["q"])
        repository.save(batch)
        runner = make_runner(index_client, repository)

        assert runner.run_one(batch.uuid) == 4
        assert runner.run_one(batch.uuid) == 0
        assert len(repository.get_results(batch.uuid)) == 4

    def test_unknown_id_raises(self, repository):
        with pytest.raises(BatchSearchNotFound):
            make_runner(repository=repository).run_one("unknown")

    def test_claimed_by_another_worker_is_skipped(self, index_client, repository):
        batch = make_batch_search(["q"])
        repository.save(batch)
        # Another worker moved it to RUNNING after the snapshot was read
        repository.set_state(batch.uuid, BatchSearchState.RUNNING)

        assert make_runner(index_client, repository).run(batch) == 0
        assert index_client.searches == []
        assert repository.get(batch.uuid).state == BatchSearchState.RUNNING


class TestTimeout:
    def test_timeout_keeps_saved_pages(self, index_client, repository):
        index_client.script_query("q", [make_docs(f"p{i}", 5) for i in range(5)])
        batch = make_batch_search(["q", "never"])
        repository.save(batch)
        clock = FakeClock()

        runner = make_runner(
            index_client,
            repository,
            clock=clock,
            **{BATCH_SEARCH_THROTTLE: 1000, BATCH_SEARCH_MAX_TIME: 2},
        )
        # Pages at t=0 and t=1000 are within budget, the page at t=2000 is not
        assert runner.run_all() == 10

        stored = repository.get(batch.uuid)
        assert stored.state == BatchSearchState.FAILURE
        assert stored.error_query == "q"
        assert stored.error_message == "BatchSearchTimeout: Batch timed out after 2s"
        query, cause = repository.failures[batch.uuid]
        assert query == "q"
        assert cause.kind == FailureKind.TIMEOUT
        assert isinstance(cause.error, BatchSearchTimeout)
        # The page that triggered the timeout was already written
        assert len(repository.get_results(batch.uuid)) == 15
        assert clock.sleeps == [1000, 1000]
        assert [s["query"] for s in index_client.searches] == ["q"]

    def test_budget_is_per_query(self, index_client, repository):
        index_client.script_query("q1", [make_docs("a", 1), make_docs("b", 1)])
        index_client.script_query("q2", [make_docs("c", 1), make_docs("d", 1)])
        batch = make_batch_search(["q1", "q2"])
        repository.save(batch)
        clock = FakeClock()

        runner = make_runner(
            index_client,
            repository,
            clock=clock,
            **{BATCH_SEARCH_THROTTLE: 1500, BATCH_SEARCH_MAX_TIME: 2},
        )
        assert runner.run_all() == 4
        assert repository.get(batch.uuid).state == BatchSearchState.SUCCESS

    def test_throttle_sleeps_between_pages(self, index_client, repository):
        index_client.script_query("q", [make_docs("a", 1), make_docs("b", 1), make_docs("c", 1)])
        repository.save(make_batch_search(["q"]))
        clock = FakeClock()

        make_runner(index_client, repository, clock=clock, **{BATCH_SEARCH_THROTTLE: 250}).run_all()

        assert clock.sleeps == [250, 250, 250]


class TestFailures:
    def test_transport_error_records_embedded_response(self, index_client, repository):
        response_error = _unexpected_response(503)
        index_client.fail_query(
            "q", IndexSearchError("scroll failed", status_code=503, causes=[response_error])
        )
        batch = make_batch_search(["q"])
        repository.save(batch)

        make_runner(index_client, repository).run_all()

        query, cause = repository.failures[batch.uuid]
        assert query == "q"
        assert cause.kind == FailureKind.TRANSPORT
        assert cause.error is response_error
        assert repository.get(batch.uuid).error_message.startswith("UnexpectedResponse")

    def test_transport_error_without_embedded_response(self, index_client, repository):
        error = IndexSearchError("scroll failed", status_code=500)
        index_client.fail_query("q", error)
        batch = make_batch_search(["q"])
        repository.save(batch)

        make_runner(index_client, repository).run_all()

        _, cause = repository.failures[batch.uuid]
        assert cause.kind == FailureKind.TRANSPORT
        assert cause.error is error

    def test_failure_mid_scroll_keeps_partial_results(self, index_client, repository):
        index_client.script_query("q1", [make_docs("a", 3)])
        index_client.script_query("q2", [make_docs("b", 4), make_docs("c", 4)])
        index_client.fail_query("q2", RuntimeError("connection reset"), at_page=1)
        batch = make_batch_search(["q1", "q2", "q3"])
        repository.save(batch)

        assert make_runner(index_client, repository).run_all() == 7

        stored = repository.get(batch.uuid)
        assert stored.state == BatchSearchState.FAILURE
        assert stored.error_query == "q2"
        assert stored.error_message == "RuntimeError: connection reset"
        assert repository.failures[batch.uuid][1].kind == FailureKind.GENERIC
        assert len(repository.get_results(batch.uuid)) == 7

    def test_store_error_is_recorded_as_failure(self, index_client):
        class FailingRepository(InMemoryBatchSearchRepository):
            def save_results(self, batch_search_id, query, documents):
                raise OSError("disk full")

        repository = FailingRepository()
        index_client.script_query("q", [make_docs("a", 2)])
        batch = make_batch_search(["q"])
        repository.save(batch)

        assert make_runner(index_client, repository).run_all() == 0
        assert repository.get(batch.uuid).state == BatchSearchState.FAILURE
        assert repository.get(batch.uuid).error_message == "OSError: disk full"


class LockedOnSuccessRepository(InMemoryBatchSearchRepository):
    """Fails the first SUCCESS write, like a database locked by another runner."""

    def __init__(self):
        super().__init__()
        self.locked = True

    def set_state(self, batch_search_id, state):
        if state == BatchSearchState.SUCCESS and self.locked:
            self.locked = False
            raise BatchSearchStoreError("database is locked")
        super().set_state(batch_search_id, state)


class DeletedAfterPullRepository(InMemoryBatchSearchRepository):
    """Deletes the first queued batch search right after it is pulled."""

    def get_queued(self):
        queued = super().get_queued()
        self.delete(queued[0].uuid)
        return queued


class TestStoreFailures:
    def test_success_write_failure_is_recorded(self, index_client):
        repository = LockedOnSuccessRepository()
        index_client.script_query("q", [make_docs("a", 2)])
        first = make_batch_search(["q"])
        second = make_batch_search(["q"])
        repository.save(first)
        repository.save(second)

        runner = make_runner(index_client, repository)
        assert runner.run_all() == 4

        stored = repository.get(first.uuid)
        assert stored.state == BatchSearchState.FAILURE
        assert stored.error_query is None
        assert stored.error_message == "BatchSearchStoreError: database is locked"
        assert repository.get(second.uuid).state == BatchSearchState.SUCCESS
        assert runner.progress_rate == 1.0

    def test_batch_deleted_before_its_run_is_skipped(self, index_client):
        repository = DeletedAfterPullRepository()
        index_client.script_query("q", [make_docs("a", 2)])
        deleted = make_batch_search(["q"])
        kept = make_batch_search(["q"])
        repository.save(deleted)
        repository.save(kept)

        runner = make_runner(index_client, repository)
        assert runner.run_all() == 2

        assert repository.get(kept.uuid).state == BatchSearchState.SUCCESS
        assert [s["query"] for s in index_client.searches] == ["q"]
        assert runner.progress_rate == 1.0

    def test_failure_write_failure_does_not_stop_the_pull(self, index_client):
        class UnwritableFailureRepository(InMemoryBatchSearchRepository):
            def set_failure(self, batch_search_id, query, cause):
                raise BatchSearchStoreError("database is locked")

        repository = UnwritableFailureRepository()
        index_client.fail_query("broken", RuntimeError("boom"))
        index_client.script_query("ok", [make_docs("a", 3)])
        failing = make_batch_search(["broken"])
        working = make_batch_search(["ok"])
        repository.save(failing)
        repository.save(working)

        runner = make_runner(index_client, repository)
        assert runner.run_all() == 3

        assert repository.get(working.uuid).state == BatchSearchState.SUCCESS
        assert runner.progress.processed == 2
        assert runner.progress_rate == 1.0


class TestMonitoring:
    def test_progress_is_zero_before_run(self):
        runner = make_runner()
        assert runner.progress_rate == 0.0

    def test_progress_is_zero_when_nothing_queued(self):
        runner = make_runner()
        assert runner.run_all() == 0
        assert runner.progress_rate == 0.0

    def test_progress_during_run(self, repository):
        seen = []

        class ObservingIndexClient(InMemoryIndexClient):
            def search(self, collection, query, **kwargs):
                seen.append(runner.progress_rate)
                return super().search(collection, query, **kwargs)

        for _ in range(4):
            repository.save(make_batch_search(["q"]))
        runner = make_runner(ObservingIndexClient(), repository)
        runner.run_all()

        assert seen == [0.0, 0.25, 0.5, 0.75]
        assert runner.progress_rate == 1.0

    def test_progress_read_from_another_thread(self, repository):
        index_client = InMemoryIndexClient()
        index_client.script_query("q", [make_docs("a", 1)])
        for _ in range(50):
            repository.save(make_batch_search(["q"]))
        runner = make_runner(index_client, repository)

        readings = []
        done = threading.Event()

        def monitor():
            while not done.is_set():
                readings.append(runner.progress_rate)

        thread = threading.Thread(target=monitor)
        thread.start()
        try:
            runner.run_all()
        finally:
            done.set()
            thread.join()

        assert all(0.0 <= r <= 1.0 for r in readings)
        assert readings == sorted(readings)
        assert runner.progress_rate == 1.0

    def test_user(self):
        assert make_runner(user=User("jdoe")).user == User("jdoe")


class TestClose:
    def test_close_releases_client_and_repository(self, index_client, repository):
        runner = make_runner(index_client, repository)
        runner.close()
        assert index_client.closed
        assert repository.closed

    def test_close_twice_is_harmless(self, index_client, repository):
        runner = make_runner(index_client, repository)
        runner.close()
        runner.close()
        assert index_client.closed

    def test_context_manager_closes(self, index_client, repository):
        with make_runner(index_client, repository):
            pass
        assert index_client.closed
        assert repository.closed
