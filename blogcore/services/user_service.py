"""
User service: account records and their avatar slot.

Unique e-mail addresses are enforced by the database; the resulting
``IntegrityError`` is turned into a ``ConflictError`` here so routers
never see driver exceptions.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blogcore.exceptions import ConflictError, UserNotFoundError
from blogcore.models import User
from blogcore.schemas import UserCreate


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _user_to_dict(user: User) -> dict:
    avatar = user.avatar
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "avatar": {"id": avatar.id, "key": avatar.key, "url": avatar.url} if avatar else None,
    }


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_users(db: AsyncSession) -> list[dict]:
    q = select(User).options(joinedload(User.avatar)).order_by(User.id)
    result = await db.execute(q)
    return [_user_to_dict(u) for u in result.unique().scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict:
    q = (
        select(User)
        .where(User.id == user_id)
        .options(joinedload(User.avatar))
        .execution_options(populate_existing=True)
    )
    user = (await db.execute(q)).unique().scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return _user_to_dict(user)


async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    user = User(email=data.email, name=data.name)
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("User with that email already exists") from exc
    await db.refresh(user, ["created_at"])
    return _user_to_dict(user)
