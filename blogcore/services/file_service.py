"""
File service: avatars (public bucket) and private files (private bucket).

A file reference row and the object it names are co-equal: losing either
one is data loss.  Both directions therefore go through
``consistency.apply_two_phase``, which keeps the database transaction open
across the bucket call:

- add: insert the row (key chosen here), upload, commit.  A failed upload
  rolls the row back, so no row ever names a missing object.
- remove: delete the row, delete the object, commit.  A failed object
  delete rolls the row back, so the file stays fully usable and the removal
  can simply be retried.

Replacing an avatar is two such steps (remove old, add new), not one
atomic swap.  If the upload of the new avatar fails the user is left with
no avatar, which is a consistent state.
"""
import asyncio
import logging
import uuid
from pathlib import PurePosixPath
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blogcore.exceptions import FileReferenceNotFoundError, UnauthorizedError, UserNotFoundError
from blogcore.models import PrivateFile, PublicFile, User
from blogcore.object_storage import ObjectStorage
from blogcore.services.consistency import WriteOperation, apply_two_phase

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def new_storage_key(filename: str) -> str:
    """Globally unique object key that keeps the client's file name readable."""
    name = PurePosixPath(filename.replace("\\", "/")).name or "file"
    return f"{uuid.uuid4()}-{name}"


def public_file_to_dict(file: PublicFile) -> dict:
    return {"id": file.id, "key": file.key, "url": file.url}


def private_file_to_dict(file: PrivateFile, url: str | None = None) -> dict:
    return {"id": file.id, "key": file.key, "owner_id": file.owner_id, "url": url}


async def _load_user(db: AsyncSession, user_id: int, *, with_avatar: bool = False) -> User:
    # populate_existing: after a rolled-back two-phase write the identity
    # map may hold a stale avatar slot.
    q = select(User).where(User.id == user_id).execution_options(populate_existing=True)
    if with_avatar:
        q = q.options(joinedload(User.avatar))
    user = (await db.execute(q)).unique().scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def _load_private_file(db: AsyncSession, file_id: int) -> PrivateFile:
    q = (
        select(PrivateFile)
        .where(PrivateFile.id == file_id)
        .execution_options(populate_existing=True)
    )
    file = (await db.execute(q)).scalar_one_or_none()
    if file is None:
        raise FileReferenceNotFoundError(file_id)
    return file


async def _load_owned_private_file(db: AsyncSession, owner_id: int, file_id: int) -> PrivateFile:
    file = await _load_private_file(db, file_id)
    if file.owner_id != owner_id:
        raise UnauthorizedError(f"File with id {file_id} does not belong to user {owner_id}")
    return file


async def _remove_avatar(db: AsyncSession, storage: ObjectStorage, user: User) -> None:
    avatar = user.avatar

    async def detach() -> PublicFile:
        user.avatar = None
        # Clear the foreign key before the row it points at goes away.
        await db.flush()
        await db.delete(avatar)
        return avatar

    async def delete_blob(file: PublicFile) -> None:
        await storage.delete(file.key)

    await apply_two_phase(db, WriteOperation.DELETE, detach, delete_blob)
    logger.info("Removed avatar %s of user %d", avatar.key, user.id)


# ---------------------------------------------------------------------------
# Avatars
# ---------------------------------------------------------------------------

async def set_avatar(
    db: AsyncSession,
    storage: ObjectStorage,
    user_id: int,
    data: bytes,
    filename: str,
    content_type: str | None = None,
) -> dict:
    """Replace the avatar of *user_id* and return the new public file."""
    user = await _load_user(db, user_id, with_avatar=True)
    if user.avatar is not None:
        await _remove_avatar(db, storage, user)

    key = new_storage_key(filename)

    async def attach() -> PublicFile:
        avatar = PublicFile(key=key, url=storage.object_url(key))
        db.add(avatar)
        user.avatar = avatar
        return avatar

    async def upload(avatar: PublicFile) -> None:
        await storage.put(avatar.key, data, content_type)

    avatar = await apply_two_phase(db, WriteOperation.CREATE, attach, upload)
    logger.info("Set avatar %s for user %d", avatar.key, user_id)
    return public_file_to_dict(avatar)


async def clear_avatar(db: AsyncSession, storage: ObjectStorage, user_id: int) -> None:
    """Remove the avatar of *user_id*; a user without one is left as is."""
    user = await _load_user(db, user_id, with_avatar=True)
    if user.avatar is None:
        return
    await _remove_avatar(db, storage, user)


# ---------------------------------------------------------------------------
# Private files
# ---------------------------------------------------------------------------

async def add_private_file(
    db: AsyncSession,
    storage: ObjectStorage,
    owner_id: int,
    data: bytes,
    filename: str,
    content_type: str | None = None,
) -> dict:
    await _load_user(db, owner_id)
    key = new_storage_key(filename)

    async def insert() -> PrivateFile:
        file = PrivateFile(key=key, owner_id=owner_id)
        db.add(file)
        return file

    async def upload(file: PrivateFile) -> None:
        await storage.put(file.key, data, content_type)

    file = await apply_two_phase(db, WriteOperation.CREATE, insert, upload)
    return private_file_to_dict(file)


async def remove_private_file(
    db: AsyncSession, storage: ObjectStorage, owner_id: int, file_id: int
) -> None:
    """
    Delete a private file owned by *owner_id*.

    Raises FileReferenceNotFoundError for unknown ids and UnauthorizedError
    when the file belongs to someone else.
    """
    file = await _load_owned_private_file(db, owner_id, file_id)

    async def detach() -> PrivateFile:
        await db.delete(file)
        return file

    async def delete_blob(f: PrivateFile) -> None:
        await storage.delete(f.key)

    await apply_two_phase(db, WriteOperation.DELETE, detach, delete_blob)


async def get_private_file(
    db: AsyncSession, storage: ObjectStorage, owner_id: int, file_id: int
) -> tuple[dict, AsyncIterator[bytes]]:
    """Return the file's metadata and a byte stream of its content."""
    file = await _load_owned_private_file(db, owner_id, file_id)
    stream = await storage.open_read_stream(file.key)
    return private_file_to_dict(file), stream


async def list_private_files(
    db: AsyncSession, storage: ObjectStorage, owner_id: int
) -> list[dict]:
    """All private files of *owner_id*, each with a presigned download URL."""
    await _load_user(db, owner_id)
    result = await db.execute(
        select(PrivateFile).where(PrivateFile.owner_id == owner_id).order_by(PrivateFile.id)
    )
    files = result.scalars().all()
    urls = await asyncio.gather(*(storage.presign(f.key) for f in files))
    return [private_file_to_dict(f, url) for f, url in zip(files, urls)]
