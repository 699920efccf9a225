"""
Centralized services container module.

Builds the index client, the batch search repository and per-user runners
from configuration, for the CLI and any other entry point.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from batchsearch.core.clock import Clock
from batchsearch.core.config import BatchSearchAppConfig, PropertiesProvider, load_config
from batchsearch.core.models import User
from batchsearch.infrastructure import (
    BatchSearchRepository,
    IndexSearchClient,
    create_batch_search_repository,
    create_index_client,
)
from batchsearch.services.batch_search_runner import BatchSearchRunner


@dataclass
class ServicesContainer:
    """
    Container holding the shared service instances.

    Attributes:
        config: Application configuration
        index_client: Client scrolling the search index
        repository: Store for batch searches and their results
        clock: Optional clock handed to the runners (system clock if None)
    """

    config: BatchSearchAppConfig
    index_client: IndexSearchClient
    repository: BatchSearchRepository
    clock: Optional[Clock] = None

    def create_batch_search_runner(self, user: User) -> BatchSearchRunner:
        """
        Build a runner bound to ``user``.

        The runner owns the container's client and repository: closing it
        closes them.
        """
        return BatchSearchRunner(
            index_client=self.index_client,
            repository=self.repository,
            properties=PropertiesProvider(self.config),
            user=user,
            clock=self.clock,
        )


def create_services(
    config_path: Optional[Path] = None,
    db_path: Optional[Path] = None,
) -> ServicesContainer:
    """
    Create all services from configuration.

    Args:
        config_path: Optional path to configuration file. If None, uses
                    environment variables and defaults.
        db_path: Optional path for the batch search database. Overrides
                 the configured ``store.db_path``.

    Returns:
        ServicesContainer with all services created (connections are
        opened lazily on first use).
    """
    config = load_config(config_path)

    index_client = create_index_client(
        host=config.index.host,
        port=config.index.port,
        url=config.index.url,
        api_key=config.index.api_key,
        timeout=config.index.timeout,
    )
    repository = create_batch_search_repository(db_path or Path(config.store.db_path))

    return ServicesContainer(
        config=config,
        index_client=index_client,
        repository=repository,
    )
