"""
Elasticsearch adapter tests.  The client is mocked, so these check the
requests the adapter sends and how it reads responses and errors.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from blogcore.config import settings
from blogcore.exceptions import SearchIndexError
from blogcore.search_index import PostsSearchIndex, SearchHits


def _client() -> MagicMock:
    client = MagicMock()
    client.index = AsyncMock()
    client.update = AsyncMock(return_value={"_id": "3", "result": "updated"})
    client.delete = AsyncMock(return_value={"_id": "3", "result": "deleted"})
    client.update_by_query = AsyncMock()
    client.delete_by_query = AsyncMock(return_value={"deleted": 0})
    client.options = MagicMock(return_value=client)
    client.search = AsyncMock(return_value={
        "hits": {
            "total": {"value": 2, "relation": "eq"},
            "hits": [{"_source": {"id": 9}}, {"_source": {"id": 4}}],
        }
    })
    client.count = AsyncMock(return_value={"count": 12})
    client.indices.exists = AsyncMock(return_value=True)
    client.indices.create = AsyncMock()
    client.indices.refresh = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def client() -> MagicMock:
    return _client()


@pytest.fixture
def index(client) -> PostsSearchIndex:
    return PostsSearchIndex("posts-test", client=client)


@pytest.mark.asyncio
async def test_search_request_shape(index, client):
    hits = await index.search("consistency", offset=20, limit=10, start_id=5)

    assert hits == SearchHits(ids=[9, 4], total=2)
    kwargs = client.search.await_args.kwargs
    assert kwargs["index"] == "posts-test"
    assert kwargs["from_"] == 20
    assert kwargs["size"] == 10
    assert kwargs["track_total_hits"] is True
    query = kwargs["query"]["bool"]
    assert query["must"]["multi_match"] == {"query": "consistency", "fields": ["title", "paragraphs"]}
    assert query["filter"] == {"range": {"id": {"gt": 5}}}
    assert kwargs["sort"][0] == {"_score": {"order": "desc"}}


@pytest.mark.asyncio
async def test_search_without_limit_uses_max_window(index, client):
    await index.search("x", offset=100)
    kwargs = client.search.await_args.kwargs
    assert kwargs["size"] == settings.SEARCH_MAX_WINDOW - 100
    assert kwargs["query"]["bool"]["filter"] == {"range": {"id": {"gt": 0}}}


@pytest.mark.asyncio
async def test_count_has_no_id_bound(index, client):
    assert await index.count("consistency") == 12
    query = client.count.await_args.kwargs["query"]
    assert query == {"multi_match": {"query": "consistency", "fields": ["title", "paragraphs"]}}


@pytest.mark.asyncio
async def test_index_uses_post_id_as_document_id(index, client):
    doc = {"id": 3, "title": "t", "paragraphs": ["p"], "author_id": 1}
    await index.index(doc)
    kwargs = client.index.await_args.kwargs
    assert kwargs["id"] == "3"
    assert kwargs["document"] == doc


@pytest.mark.asyncio
async def test_update_goes_by_document_id(index, client):
    """By-id updates are real-time, and field values travel as a partial doc, not a script."""
    partial = {"title": "It's \"quoted\"; ctx.op = 'delete'", "paragraphs": ["p"]}
    assert await index.update(3, partial) == 1

    client.options.assert_called_with(ignore_status=404)
    kwargs = client.update.await_args.kwargs
    assert kwargs["index"] == "posts-test"
    assert kwargs["id"] == "3"
    assert kwargs["doc"] == partial
    assert "script" not in kwargs
    client.update_by_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_missing_document_returns_zero(index, client):
    client.update.return_value = {"error": {"type": "document_missing_exception"}, "status": 404}
    assert await index.update(3, {"title": "t"}) == 0


@pytest.mark.asyncio
async def test_remove_goes_by_document_id(index, client):
    assert await index.remove(3) == 1
    client.options.assert_called_with(ignore_status=404)
    kwargs = client.delete.await_args.kwargs
    assert kwargs == {"index": "posts-test", "id": "3"}
    client.delete_by_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_remove_missing_document_returns_zero(index, client):
    client.delete.return_value = {"_id": "3", "result": "not_found"}
    assert await index.remove(3) == 0


@pytest.mark.asyncio
async def test_remove_missing_keeps_listed_ids_within_range(index, client):
    client.delete_by_query.return_value = {"deleted": 2}
    assert await index.remove_missing([4, 7], after_id=3, up_to_id=7) == 2

    client.indices.refresh.assert_awaited_once_with(index="posts-test")
    kwargs = client.delete_by_query.await_args.kwargs
    assert kwargs["query"] == {
        "bool": {
            "filter": {"range": {"id": {"gt": 3, "lte": 7}}},
            "must_not": {"terms": {"id": [4, 7]}},
        }
    }


@pytest.mark.asyncio
async def test_remove_missing_above_last_id_is_unbounded(index, client):
    await index.remove_missing([], after_id=9)
    query = client.delete_by_query.await_args.kwargs["query"]
    assert query == {"bool": {"filter": {"range": {"id": {"gt": 9}}}}}


@pytest.mark.asyncio
async def test_transport_error_becomes_search_index_error(index, client):
    client.search.side_effect = ESConnectionError("connection refused")
    with pytest.raises(SearchIndexError) as excinfo:
        await index.search("x")
    assert excinfo.value.status_code == 502
    assert isinstance(excinfo.value.__cause__, ESConnectionError)


@pytest.mark.asyncio
async def test_ensure_index_creates_missing_index(index, client):
    client.indices.exists.return_value = False
    await index.ensure_index()
    client.indices.create.assert_awaited_once()
    assert client.indices.create.await_args.kwargs["index"] == "posts-test"


@pytest.mark.asyncio
async def test_ensure_index_keeps_existing_index(index, client):
    await index.ensure_index()
    client.indices.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_unconnected_index_raises():
    with pytest.raises(SearchIndexError):
        await PostsSearchIndex("posts-test").search("x")
