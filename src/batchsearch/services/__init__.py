"""
Service Layer - BatchSearchRunner, failure classification and ServicesContainer.
"""

from batchsearch.services.batch_search_runner import (
    BatchSearchRunner,
    Monitorable,
    RunProgress,
)
from batchsearch.services.container import ServicesContainer, create_services
from batchsearch.services.failure_classifier import (
    TRANSPORT_RESPONSE_ERRORS,
    BatchSearchTimeout,
    classify_failure,
    find_transport_cause,
)

__all__ = [
    # Container and factory
    "ServicesContainer",
    "create_services",
    # Runner
    "BatchSearchRunner",
    "Monitorable",
    "RunProgress",
    # Failures
    "BatchSearchTimeout",
    "classify_failure",
    "find_transport_cause",
    "TRANSPORT_RESPONSE_ERRORS",
]
