"""
Elasticsearch adapter for the posts search index.

The index holds a disposable projection of each Post (``id``, ``title``,
``paragraphs``, ``author_id``) stored under ``_id == str(post.id)``.  It is
only ever trusted for *which* ids match and in what relevance order; field
values shown to clients are always re-read from the database.

The adapter is stateless apart from its client: the index name comes from
settings (or the constructor) rather than from module-level state, so tests
and the reindex script can point it at a scratch index.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from blogcore.config import settings
from blogcore.exceptions import SearchIndexError

logger = logging.getLogger(__name__)

SEARCH_FIELDS: tuple[str, ...] = ("title", "paragraphs")

_MAPPINGS = {
    "properties": {
        "id": {"type": "long"},
        "title": {"type": "text"},
        "paragraphs": {"type": "text"},
        "author_id": {"type": "long"},
    }
}

# Document-API results that mean "a document was written or removed".
_UPDATED = ("updated", "noop")
_DELETED = ("deleted",)


@dataclass
class SearchHits:
    """Ids in relevance order plus the hit total for the bounded query."""

    ids: list[int]
    total: int


def post_to_document(post) -> dict:
    """Project a Post ORM instance onto its search document."""
    return {
        "id": post.id,
        "title": post.title,
        "paragraphs": list(post.paragraphs),
        "author_id": post.author_id,
    }


def _text_query(text: str, fields) -> dict:
    return {"multi_match": {"query": text, "fields": list(fields)}}


def _result(response) -> str | None:
    # A 404 answered under ignore_status carries an error body, not a result.
    return response["result"] if "result" in response else None


@asynccontextmanager
async def _translate_errors(action: str):
    try:
        yield
    except (ApiError, TransportError) as exc:
        raise SearchIndexError(f"Search index {action} failed: {exc}") from exc


class PostsSearchIndex:
    def __init__(self, index_name: str | None = None, client: AsyncElasticsearch | None = None) -> None:
        self.index_name = index_name or settings.SEARCH_INDEX_NAME
        self._client = client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._client is None:
            self._client = AsyncElasticsearch(settings.ELASTICSEARCH_URL)
        await self.ensure_index()
        logger.info("Search index ready: %s/%s", settings.ELASTICSEARCH_URL, self.index_name)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncElasticsearch:
        if self._client is None:
            raise SearchIndexError("Search index is not connected")
        return self._client

    async def ensure_index(self) -> None:
        async with _translate_errors("ensure_index"):
            if not await self.client.indices.exists(index=self.index_name):
                await self.client.indices.create(index=self.index_name, mappings=_MAPPINGS)
                logger.info("Created search index %r", self.index_name)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def index(self, document: dict) -> None:
        """Index *document*; re-indexing the same id overwrites it."""
        async with _translate_errors("index"):
            await self.client.index(
                index=self.index_name,
                id=str(document["id"]),
                document=document,
            )

    async def update(self, post_id: int, partial_document: dict) -> int:
        """
        Overwrite the fields in *partial_document* on the document for
        *post_id*.  Returns 1, or 0 when the document is missing, which is
        not an error.

        Goes through the document API by ``_id``, which is real-time: a
        document indexed a moment ago is found even before the next refresh.
        """
        async with _translate_errors("update"):
            response = await self.client.options(ignore_status=404).update(
                index=self.index_name,
                id=str(post_id),
                doc=partial_document,
                retry_on_conflict=3,
            )
        return 1 if _result(response) in _UPDATED else 0

    async def remove(self, post_id: int) -> int:
        """Delete the document for *post_id* by ``_id``; returns the number deleted."""
        async with _translate_errors("remove"):
            response = await self.client.options(ignore_status=404).delete(
                index=self.index_name,
                id=str(post_id),
            )
        return 1 if _result(response) in _DELETED else 0

    async def remove_missing(
        self, keep_ids: list[int], after_id: int = 0, up_to_id: int | None = None
    ) -> int:
        """
        Delete documents with ``after_id < id <= up_to_id`` (no upper bound
        when *up_to_id* is None) whose id is not in *keep_ids*.  Returns the
        number deleted.  Used by the rebuild to drop documents of posts
        that no longer exist.
        """
        bounds = {"gt": after_id}
        if up_to_id is not None:
            bounds["lte"] = up_to_id
        query = {"bool": {"filter": {"range": {"id": bounds}}}}
        if keep_ids:
            query["bool"]["must_not"] = {"terms": {"id": list(keep_ids)}}
        async with _translate_errors("remove_missing"):
            # delete_by_query only sees refreshed documents.
            await self.client.indices.refresh(index=self.index_name)
            response = await self.client.delete_by_query(
                index=self.index_name,
                query=query,
                conflicts="proceed",
                refresh=True,
            )
        return response["deleted"]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        text: str,
        offset: int = 0,
        limit: int | None = None,
        start_id: int | None = None,
    ) -> SearchHits:
        """
        Return ids matching *text* in relevance order (id breaks ties),
        restricted to ``id > start_id``.  ``total`` counts the hits of this
        bounded query.
        """
        size = limit if limit is not None else max(settings.SEARCH_MAX_WINDOW - offset, 0)
        async with _translate_errors("search"):
            response = await self.client.search(
                index=self.index_name,
                query={
                    "bool": {
                        "must": _text_query(text, SEARCH_FIELDS),
                        "filter": {"range": {"id": {"gt": start_id or 0}}},
                    }
                },
                sort=[{"_score": {"order": "desc"}}, {"id": {"order": "asc"}}],
                from_=offset,
                size=size,
                source=["id"],
                track_total_hits=True,
            )
        hits = response["hits"]
        return SearchHits(
            ids=[int(hit["_source"]["id"]) for hit in hits["hits"]],
            total=hits["total"]["value"],
        )

    async def count(self, text: str, fields=SEARCH_FIELDS) -> int:
        """Total documents matching *text*, with no id bound."""
        async with _translate_errors("count"):
            response = await self.client.count(
                index=self.index_name,
                query=_text_query(text, fields),
            )
        return response["count"]


# Module-level singleton; routes receive it through ``get_search_index``.
posts_index = PostsSearchIndex()
