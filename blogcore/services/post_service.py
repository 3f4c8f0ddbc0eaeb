"""
Post service: writes for the Post aggregate and its search projection.

Every write goes through ``consistency.apply_write``: the database row is
committed first and the search document follows.  An index outage
therefore never loses a post; the document goes stale or missing until the
next write to that post or a ``rebuild_search_index`` run.

Cache entries are invalidated after the primary commit, so reads that go
to the database see the write immediately.  Search results may lag.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from blogcore.cache import cache
from blogcore.exceptions import (
    CategoryNotFoundError,
    PostNotFoundError,
    SearchIndexError,
    UserNotFoundError,
)
from blogcore.models import Category, Post, User
from blogcore.schemas import PostCreate, PostUpdate
from blogcore.search_index import PostsSearchIndex, post_to_document
from blogcore.services.consistency import WriteOperation, apply_write
from blogcore.services.post_query import post_to_dict

logger = logging.getLogger(__name__)

_REINDEX_BATCH_SIZE = 500


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _resolve_categories(db: AsyncSession, category_ids: list[int]) -> list[Category]:
    """Return the categories for *category_ids* in request order (deduplicated)."""
    wanted = list(dict.fromkeys(category_ids))
    if not wanted:
        return []
    result = await db.execute(select(Category).where(Category.id.in_(wanted)))
    found = {c.id: c for c in result.scalars().all()}
    for category_id in wanted:
        if category_id not in found:
            raise CategoryNotFoundError(category_id)
    return [found[category_id] for category_id in wanted]


async def _load_post(db: AsyncSession, post_id: int) -> Post:
    result = await db.execute(
        select(Post).where(Post.id == post_id).options(selectinload(Post.categories))
    )
    post = result.scalar_one_or_none()
    if post is None:
        raise PostNotFoundError(post_id)
    return post


async def _sync_updated_document(index: PostsSearchIndex, post: Post) -> None:
    """
    Overwrite the indexed fields of *post*.  A missing document (an earlier
    index write failed) is re-created so the index heals itself.
    """
    document = post_to_document(post)
    partial = {field: value for field, value in document.items() if field != "id"}
    if not await index.update(post.id, partial):
        logger.info("Search document for post %d missing on update; re-indexing", post.id)
        await index.index(document)


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_post(db: AsyncSession, post_id: int) -> dict:
    generation = await cache.generation()
    cached = await cache.get_post(generation, post_id)
    if cached:
        return cached

    data = post_to_dict(await _load_post(db, post_id))
    await cache.put_post(generation, post_id, data)
    return data


async def create_post(
    db: AsyncSession, index: PostsSearchIndex, data: PostCreate, author_id: int
) -> dict:
    """Create a post authored by *author_id* and index it."""

    async def insert() -> Post:
        if await db.get(User, author_id) is None:
            raise UserNotFoundError(author_id)
        post = Post(title=data.title, paragraphs=list(data.paragraphs), author_id=author_id)
        post.categories = await _resolve_categories(db, data.category_ids)
        db.add(post)
        await db.flush()
        await db.refresh(post, ["created_at"])
        return post

    async def index_document(post: Post) -> None:
        await index.index(post_to_document(post))

    post = await apply_write(db, WriteOperation.CREATE, insert, index_document)
    await cache.invalidate_posts()
    return post_to_dict(post)


async def update_post(
    db: AsyncSession, index: PostsSearchIndex, post_id: int, data: PostUpdate
) -> dict:
    """
    Partially update a post.  Only fields present in the payload change;
    an explicit ``null`` leaves the field as it was.
    """

    async def mutate() -> Post:
        post = await _load_post(db, post_id)
        changes = data.model_dump(exclude_unset=True)
        category_ids = changes.pop("category_ids", None)
        for field, value in changes.items():
            if value is not None:
                setattr(post, field, value)
        if category_ids is not None:
            post.categories = await _resolve_categories(db, category_ids)
        await db.flush()
        return post

    async def update_document(post: Post) -> None:
        await _sync_updated_document(index, post)

    post = await apply_write(db, WriteOperation.UPDATE, mutate, update_document)
    await cache.invalidate_posts()
    return post_to_dict(post)


async def delete_post(db: AsyncSession, index: PostsSearchIndex, post_id: int) -> None:
    """Delete a post and its search document."""

    async def remove() -> Post:
        # Categories are loaded so the ORM clears the association rows.
        post = await _load_post(db, post_id)
        await db.delete(post)
        await db.flush()
        return post

    async def remove_document(post: Post) -> None:
        await index.remove(post.id)

    await apply_write(db, WriteOperation.DELETE, remove, remove_document)
    await cache.invalidate_posts()


async def rebuild_search_index(db: AsyncSession, index: PostsSearchIndex) -> dict:
    """
    Re-index every post from the database, in id order and in batches, and
    delete documents whose post no longer exists (left behind when an index
    delete failed).

    Documents that fail to index are logged and counted; the run carries on
    so one bad document does not block the rest.  A failed prune propagates
    as ``SearchIndexError``.
    """
    indexed = failed = removed = 0
    last_id = 0
    while True:
        result = await db.execute(
            select(Post).where(Post.id > last_id).order_by(Post.id).limit(_REINDEX_BATCH_SIZE)
        )
        batch = result.scalars().all()
        if not batch:
            break
        for post in batch:
            try:
                await index.index(post_to_document(post))
                indexed += 1
            except SearchIndexError as exc:
                failed += 1
                logger.warning("Re-index of post %d failed: %s", post.id, exc)
        removed += await index.remove_missing(
            [post.id for post in batch], after_id=last_id, up_to_id=batch[-1].id
        )
        last_id = batch[-1].id

    # Everything above the highest surviving id is stale.
    removed += await index.remove_missing([], after_id=last_id)

    logger.info(
        "Search index rebuilt: %d indexed, %d failed, %d stale removed", indexed, failed, removed
    )
    return {"indexed": indexed, "failed": failed, "removed": removed}
