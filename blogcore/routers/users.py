from fastapi import APIRouter, Depends, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.database import get_db
from blogcore.dependencies import get_current_user_id, get_private_storage, get_public_storage
from blogcore.object_storage import ObjectStorage
from blogcore.schemas import PrivateFileResponse, PublicFileResponse, UserCreate, UserResponse
from blogcore.services import file_service, user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
async def list_users(db: AsyncSession = Depends(get_db)):
    return await user_service.get_users(db)


@router.post("", status_code=201, response_model=UserResponse)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    return await user_service.create_user(db, data)


# --- Avatar of the acting user ---

@router.post("/me/avatar", status_code=201, response_model=PublicFileResponse)
async def set_avatar(
    file: UploadFile,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_public_storage),
):
    data = await file.read()
    return await file_service.set_avatar(
        db, storage, user_id, data, file.filename or "avatar", file.content_type
    )


@router.delete("/me/avatar", status_code=204)
async def clear_avatar(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_public_storage),
):
    await file_service.clear_avatar(db, storage, user_id)


# --- Private files of the acting user ---

@router.post("/me/files", status_code=201, response_model=PrivateFileResponse)
async def add_private_file(
    file: UploadFile,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_private_storage),
):
    data = await file.read()
    return await file_service.add_private_file(
        db, storage, user_id, data, file.filename or "file", file.content_type
    )


@router.get("/me/files", response_model=list[PrivateFileResponse])
async def list_private_files(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_private_storage),
):
    return await file_service.list_private_files(db, storage, user_id)


@router.get("/me/files/{file_id}")
async def get_private_file(
    file_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_private_storage),
):
    info, stream = await file_service.get_private_file(db, storage, user_id, file_id)
    return StreamingResponse(
        stream,
        media_type="application/octet-stream",
        headers={"X-File-Key": info["key"]},
    )


@router.delete("/me/files/{file_id}", status_code=204)
async def remove_private_file(
    file_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_private_storage),
):
    await file_service.remove_private_file(db, storage, user_id, file_id)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)
