"""
Index search client module.

Provides scroll-based retrieval of documents from a Qdrant collection.
"""

from typing import Optional

from .base import IndexSearchClient, IndexSearchError, SearchCursor
from .qdrant import QdrantIndexClient, QdrantScrollCursor, build_filter, has_path_prefix

__all__ = [
    "IndexSearchClient",
    "IndexSearchError",
    "SearchCursor",
    "QdrantIndexClient",
    "QdrantScrollCursor",
    "build_filter",
    "has_path_prefix",
    "create_index_client",
]


def create_index_client(
    host: str = "localhost",
    port: int = 6333,
    url: Optional[str] = None,
    api_key: Optional[str] = None,
    timeout: float = 30.0,
) -> IndexSearchClient:
    """
    Factory function to create an index search client.

    Args:
        host: Qdrant server host
        port: Qdrant server port
        url: Optional Qdrant URL (takes precedence over host/port)
        api_key: Optional API key for authentication
        timeout: Request timeout in seconds

    Returns:
        Configured IndexSearchClient instance
    """
    return QdrantIndexClient(host=host, port=port, url=url, api_key=api_key, timeout=timeout)
