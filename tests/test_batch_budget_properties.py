"""
Property-based tests for BatchBudget.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from batchsearch.core.models import MAX_BATCH_RESULT_SIZE, MAX_SCROLL_SIZE, BatchBudget


@given(pages=st.lists(st.integers(min_value=1, max_value=MAX_SCROLL_SIZE), max_size=40))
@settings(max_examples=100)
def test_budget_never_overflows(pages):
    """Consuming only while there is room keeps the total below the maximum."""
    budget = BatchBudget()
    for size in pages:
        if not budget.has_room():
            break
        budget.consume(size)

    assert budget.consumed < MAX_BATCH_RESULT_SIZE


@given(consumed=st.integers(min_value=0, max_value=2 * MAX_BATCH_RESULT_SIZE))
def test_has_room_threshold(consumed):
    budget = BatchBudget(consumed=consumed)
    assert budget.has_room() == (consumed < MAX_BATCH_RESULT_SIZE - MAX_SCROLL_SIZE)


def test_last_page_before_threshold():
    budget = BatchBudget(consumed=56499)
    assert budget.has_room()
    budget.consume(1)
    assert not budget.has_room()
