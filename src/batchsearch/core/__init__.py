"""
Core Layer - Domain models, configuration and clock.
"""

from batchsearch.core.clock import Clock, SystemClock
from batchsearch.core.config import (
    BATCH_SEARCH_MAX_TIME,
    BATCH_SEARCH_THROTTLE,
    SCROLL_SIZE,
    BatchSearchAppConfig,
    BatchSearchConfig,
    IndexConfig,
    LoggingConfig,
    PropertiesProvider,
    StoreConfig,
    load_config,
)
from batchsearch.core.models import (
    MAX_BATCH_RESULT_SIZE,
    MAX_SCROLL_SIZE,
    BatchBudget,
    BatchSearch,
    BatchSearchState,
    Document,
    FailureCause,
    FailureKind,
    SearchResult,
    User,
    can_transition,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    # Config
    "BatchSearchAppConfig",
    "IndexConfig",
    "StoreConfig",
    "BatchSearchConfig",
    "LoggingConfig",
    "PropertiesProvider",
    "load_config",
    "BATCH_SEARCH_THROTTLE",
    "BATCH_SEARCH_MAX_TIME",
    "SCROLL_SIZE",
    # Models
    "BatchSearch",
    "BatchSearchState",
    "BatchBudget",
    "Document",
    "FailureCause",
    "FailureKind",
    "SearchResult",
    "User",
    "can_transition",
    "MAX_SCROLL_SIZE",
    "MAX_BATCH_RESULT_SIZE",
]
