"""
Classification of errors that end a batch search.

A backend failure usually wraps the HTTP-level error that explains it. The
classifier digs that error out so the persisted cause says what the backend
actually answered rather than repeating the wrapper's message.
"""

import logging
from typing import Iterator, Optional

import httpx
from qdrant_client.http.exceptions import UnexpectedResponse

from batchsearch.core.models import FailureCause, FailureKind
from batchsearch.infrastructure.index_client import IndexSearchError

logger = logging.getLogger(__name__)

# Lower-level errors carrying the backend's HTTP response
TRANSPORT_RESPONSE_ERRORS = (UnexpectedResponse, httpx.HTTPStatusError)


class BatchSearchTimeout(Exception):
    """Raised when a query exceeds its run-time budget between two pages."""

    def __init__(self, max_time_seconds: int):
        super().__init__(f"Batch timed out after {max_time_seconds}s")
        self.max_time_seconds = max_time_seconds


def _attached_errors(error: BaseException) -> Iterator[BaseException]:
    """
    Walk the errors attached to ``error``, breadth first.

    Covers the explicit ``causes`` of an IndexSearchError, exception
    chaining and the members of exception groups.
    """
    seen = {id(error)}
    pending = [error]
    while pending:
        current = pending.pop(0)
        attached = list(getattr(current, "causes", ()))
        attached.extend(getattr(current, "exceptions", ()))
        attached.extend(e for e in (current.__cause__, current.__context__) if e is not None)
        for child in attached:
            if isinstance(child, BaseException) and id(child) not in seen:
                seen.add(id(child))
                yield child
                pending.append(child)


def find_transport_cause(error: BaseException) -> Optional[BaseException]:
    """Return the first embedded transport response error, if any."""
    for attached in _attached_errors(error):
        if isinstance(attached, TRANSPORT_RESPONSE_ERRORS):
            return attached
    return None


def classify_failure(error: BaseException) -> FailureCause:
    """
    Classify an error raised while running a batch search.

    Args:
        error: The error that ended the run

    Returns:
        FailureCause tagged TIMEOUT, TRANSPORT or GENERIC. For transport
        failures the cause holds the most specific embedded response error,
        falling back to ``error`` itself.
    """
    if isinstance(error, BatchSearchTimeout):
        return FailureCause(FailureKind.TIMEOUT, error)
    if isinstance(error, (IndexSearchError,) + TRANSPORT_RESPONSE_ERRORS):
        return FailureCause(FailureKind.TRANSPORT, find_transport_cause(error) or error)
    return FailureCause(FailureKind.GENERIC, error)
