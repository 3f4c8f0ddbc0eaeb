"""
Post listing and search: the paginated query engine.

Counting rules
--------------
- Without a cursor, ``count`` is the total for the query: every post for a
  listing, ``hits.total`` for a search.
- With a cursor (``start_id``), items are limited to ``id > start_id`` but
  ``count`` still reports the *unbounded* total (all posts, or every hit
  for the text).  Clients paging forward with "load more" use it as the
  number of posts available.

Search results are stitched: the index supplies ids and their relevance
order, the database supplies the field values.  Re-fetched rows are put
back into index order explicitly, and ids that no longer resolve to a post
are dropped rather than returned as ghosts.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from blogcore.cache import cache
from blogcore.models import Post
from blogcore.schemas import PostPage
from blogcore.search_index import PostsSearchIndex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def post_to_dict(post: Post) -> dict:
    """Serialise a Post ORM instance (with categories loaded) to a plain dict."""
    return {
        "id": post.id,
        "title": post.title,
        "paragraphs": list(post.paragraphs),
        "author_id": post.author_id,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "categories": [{"id": c.id, "name": c.name} for c in post.categories],
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def fetch_posts_by_ids(db: AsyncSession, post_ids: list[int]) -> dict[int, Post]:
    """Return the posts among *post_ids* that exist, keyed by id."""
    result = await db.execute(
        select(Post).where(Post.id.in_(post_ids)).options(selectinload(Post.categories))
    )
    return {post.id: post for post in result.scalars().all()}


async def list_posts(
    db: AsyncSession,
    offset: int | None = None,
    limit: int | None = None,
    start_id: int | None = None,
) -> PostPage:
    """
    Return posts in ascending id order.

    Two SQL statements on a cache miss: an unbounded COUNT and the page
    itself.  ``limit=None`` returns everything from *offset* onward.
    """
    offset = offset or 0
    generation = await cache.generation()
    cached = await cache.get_page(generation, offset, limit, start_id)
    if cached:
        return PostPage(**cached)

    # The count ignores the cursor on purpose.
    total: int = (await db.execute(select(func.count()).select_from(Post))).scalar_one()

    q = (
        select(Post)
        .options(selectinload(Post.categories))
        .order_by(Post.id.asc())
        .offset(offset)
    )
    if start_id is not None:
        q = q.where(Post.id > start_id)
    if limit is not None:
        q = q.limit(limit)
    posts = (await db.execute(q)).scalars().all()

    page = PostPage(items=[post_to_dict(p) for p in posts], count=total)
    await cache.put_page(generation, offset, limit, start_id, page.model_dump(mode="json"))
    return page


async def search_posts(
    db: AsyncSession,
    index: PostsSearchIndex,
    text: str,
    offset: int | None = None,
    limit: int | None = None,
    start_id: int | None = None,
) -> PostPage:
    """
    Return posts matching *text* in relevance order.

    No fallback to listing: blank *text* simply matches nothing.  When the
    index reports no ids the database is not queried at all.
    """
    offset = offset or 0
    hits = await index.search(text, offset, limit, start_id)
    count = await index.count(text) if start_id is not None else hits.total

    if not hits.ids:
        return PostPage(items=[], count=count)

    posts = await fetch_posts_by_ids(db, hits.ids)
    ghosts = [post_id for post_id in hits.ids if post_id not in posts]
    if ghosts:
        logger.info("Search index returned %d id(s) with no post: %s", len(ghosts), ghosts)

    return PostPage(
        items=[post_to_dict(posts[post_id]) for post_id in hits.ids if post_id in posts],
        count=count,
    )
