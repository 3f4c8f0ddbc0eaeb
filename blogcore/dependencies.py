from fastapi import Header, Query

from blogcore.config import settings
from blogcore.exceptions import UnauthorizedError
from blogcore.object_storage import ObjectStorage, private_storage, public_storage
from blogcore.search_index import PostsSearchIndex, posts_index


class PaginationParams:
    """
    Reusable FastAPI dependency that parses post listing/search parameters.

    Attributes
    ----------
    search:
        Free text.  When present the request is a search, otherwise a
        listing.  An empty string is rejected (422) instead of silently
        turning into a listing.
    offset:
        Number of items to skip (default 0).
    limit:
        Page size; omitted means "no cap".  Capped to
        ``settings.MAX_PAGE_SIZE`` when given.
    start_id:
        ``startId`` cursor: only posts with a larger id are returned, while
        ``count`` keeps reporting the unbounded total.
    """

    def __init__(
        self,
        search: str | None = Query(None, min_length=1, description="Full-text query."),
        offset: int = Query(0, ge=0, description="Items to skip."),
        limit: int | None = Query(None, ge=1, description="Page size; omit for all."),
        start_id: int | None = Query(
            None,
            alias="startId",
            ge=1,
            description="Return only posts with an id greater than this.",
        ),
    ) -> None:
        self.search = search
        self.offset = offset
        self.limit = min(limit, settings.MAX_PAGE_SIZE) if limit is not None else None
        self.start_id = start_id


async def get_current_user_id(x_user_id: int | None = Header(None)) -> int:
    """
    Acting user for the request.  Token issuance lives outside this
    service; the gateway in front of it forwards the authenticated id.
    """
    if x_user_id is None:
        raise UnauthorizedError("Missing X-User-Id header")
    return x_user_id


async def get_search_index() -> PostsSearchIndex:
    return posts_index


async def get_public_storage() -> ObjectStorage:
    return public_storage


async def get_private_storage() -> ObjectStorage:
    return private_storage
