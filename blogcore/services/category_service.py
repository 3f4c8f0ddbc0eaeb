"""
Category service: CRUD for Category.

Categories are not part of the search projection, so writes here touch the
database only and need no coordination with the index.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from blogcore.cache import cache
from blogcore.exceptions import CategoryNotFoundError, ConflictError
from blogcore.models import Category, Post
from blogcore.schemas import CategoryCreate, CategoryUpdate
from blogcore.services.post_query import post_to_dict


def _category_to_dict(category: Category) -> dict:
    return {"id": category.id, "name": category.name}


async def _flush_or_conflict(db: AsyncSession, name: str) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(f"Category {name!r} already exists") from exc


async def get_categories(db: AsyncSession) -> list[dict]:
    result = await db.execute(select(Category).order_by(Category.id))
    return [_category_to_dict(c) for c in result.scalars().all()]


async def get_category(db: AsyncSession, category_id: int) -> dict:
    """Return the category with its posts (posts carry their own categories)."""
    q = (
        select(Category)
        .where(Category.id == category_id)
        .options(selectinload(Category.posts).selectinload(Post.categories))
    )
    category = (await db.execute(q)).scalar_one_or_none()
    if category is None:
        raise CategoryNotFoundError(category_id)
    data = _category_to_dict(category)
    data["posts"] = [post_to_dict(p) for p in sorted(category.posts, key=lambda p: p.id)]
    return data


async def create_category(db: AsyncSession, data: CategoryCreate) -> dict:
    category = Category(name=data.name)
    db.add(category)
    await _flush_or_conflict(db, data.name)
    return _category_to_dict(category)


async def update_category(db: AsyncSession, category_id: int, data: CategoryUpdate) -> dict:
    category = await db.get(Category, category_id)
    if category is None:
        raise CategoryNotFoundError(category_id)
    if data.name is not None:
        category.name = data.name
        await _flush_or_conflict(db, data.name)
    # Post payloads embed category names; retire cached copies once committed.
    await db.commit()
    await cache.invalidate_posts()
    return _category_to_dict(category)


async def delete_category(db: AsyncSession, category_id: int) -> None:
    # Posts are loaded so the ORM removes the association rows too.
    q = select(Category).where(Category.id == category_id).options(selectinload(Category.posts))
    category = (await db.execute(q)).scalar_one_or_none()
    if category is None:
        raise CategoryNotFoundError(category_id)
    await db.delete(category)
    await db.commit()
    await cache.invalidate_posts()
