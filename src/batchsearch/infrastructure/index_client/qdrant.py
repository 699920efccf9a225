"""
Qdrant-based index search client.

Scrolls payload-only points of a collection using full-text conditions on
the document content.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

import httpx
from qdrant_client import QdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from batchsearch.core.models import Document

from .base import IndexSearchClient, IndexSearchError, SearchCursor

logger = logging.getLogger(__name__)

_DOCUMENT_FIELDS = (
    "id",
    "root_id",
    "path",
    "dirname",
    "content_type",
    "content_length",
    "creation_date",
)


def build_filter(
    query: str,
    fuzziness: int = 0,
    phrase_matches: bool = False,
    file_types: Sequence[str] = (),
) -> models.Filter:
    """
    Build the server-side scroll filter for a query.

    Qdrant full-text conditions have no edit distance, so a non-zero
    fuzziness widens the match to any query token instead of all of them.
    """
    if phrase_matches:
        text_match = models.MatchPhrase(phrase=query)
    elif fuzziness > 0:
        text_match = models.MatchTextAny(text_any=query)
    else:
        text_match = models.MatchText(text=query)

    conditions = [models.FieldCondition(key="content", match=text_match)]

    if file_types:
        conditions.append(
            models.FieldCondition(
                key="content_type",
                match=models.MatchAny(any=list(file_types)),
            )
        )

    return models.Filter(must=conditions)


def has_path_prefix(dirname: str, paths: Sequence[str]) -> bool:
    """Check if ``dirname`` starts with one of ``paths`` (empty keeps all)."""
    if not paths:
        return True
    return any(dirname.startswith(prefix) for prefix in paths)


def _parse_date(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def record_to_document(record) -> Document:
    """Convert a scrolled Qdrant record to a Document."""
    payload = record.payload or {}
    return Document(
        id=str(payload.get("id") or record.id),
        root_id=payload.get("root_id"),
        path=payload.get("path", ""),
        dirname=payload.get("dirname", ""),
        content_type=payload.get("content_type", ""),
        content_length=int(payload.get("content_length") or 0),
        creation_date=_parse_date(payload.get("creation_date")),
        metadata={k: v for k, v in payload.items() if k not in _DOCUMENT_FIELDS},
    )


class QdrantScrollCursor(SearchCursor):
    """
    Cursor over a Qdrant scroll.

    Path prefixes cannot be expressed as a Qdrant condition, so they are
    applied to each scrolled page. The cursor keeps scrolling until it has a
    non-empty filtered page or the scroll ends, so an empty page always
    means exhaustion.
    """

    def __init__(
        self,
        client: QdrantClient,
        collection: str,
        scroll_filter: models.Filter,
        page_size: int,
        paths: Sequence[str] = (),
        excluded_fields: Sequence[str] = (),
    ):
        self._client = client
        self._collection = collection
        self._filter = scroll_filter
        self._page_size = page_size
        self._paths = list(paths)
        self._with_payload = (
            models.PayloadSelectorExclude(exclude=list(excluded_fields))
            if excluded_fields
            else True
        )
        self._offset = None
        self._exhausted = False

    def next_page(self) -> List[Document]:
        while not self._exhausted:
            try:
                records, self._offset = self._client.scroll(
                    collection_name=self._collection,
                    scroll_filter=self._filter,
                    limit=self._page_size,
                    offset=self._offset,
                    with_payload=self._with_payload,
                    with_vectors=False,
                )
            except (UnexpectedResponse, ResponseHandlingException, httpx.HTTPError) as e:
                self._exhausted = True
                raise IndexSearchError(
                    f"Failed to scroll collection '{self._collection}': {e}",
                    status_code=getattr(e, "status_code", None),
                    causes=[e],
                ) from e

            if self._offset is None:
                self._exhausted = True

            documents = [
                doc
                for doc in (record_to_document(r) for r in records)
                if has_path_prefix(doc.dirname, self._paths)
            ]
            if documents:
                return documents

        return []


class QdrantIndexClient(IndexSearchClient):
    """Index search client backed by Qdrant scroll."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6333,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self._host = host
        self._port = port
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._client: Optional[QdrantClient] = None

    def _get_client(self) -> QdrantClient:
        """Get or create the Qdrant client."""
        if self._client is None:
            if self._url:
                self._client = QdrantClient(
                    url=self._url, api_key=self._api_key, timeout=int(self._timeout)
                )
            else:
                self._client = QdrantClient(
                    host=self._host,
                    port=self._port,
                    api_key=self._api_key,
                    timeout=int(self._timeout),
                )
        return self._client

    def search(
        self,
        collection: str,
        query: str,
        fuzziness: int = 0,
        phrase_matches: bool = False,
        file_types: Sequence[str] = (),
        paths: Sequence[str] = (),
        excluded_fields: Sequence[str] = (),
        page_size: int = 1000,
    ) -> SearchCursor:
        logger.debug(
            f"Opening scroll on '{collection}' for query '{query}' "
            f"(fuzziness={fuzziness}, phrase={phrase_matches}, page_size={page_size})"
        )
        return QdrantScrollCursor(
            client=self._get_client(),
            collection=collection,
            scroll_filter=build_filter(query, fuzziness, phrase_matches, file_types),
            page_size=page_size,
            paths=paths,
            excluded_fields=excluded_fields,
        )

    def close(self) -> None:
        """Close the client connection."""
        if self._client:
            self._client.close()
            self._client = None
