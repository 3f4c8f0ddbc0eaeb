from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.database import get_db
from blogcore.dependencies import PaginationParams, get_current_user_id, get_search_index
from blogcore.schemas import PostCreate, PostPage, PostResponse, PostUpdate, ReindexResponse
from blogcore.search_index import PostsSearchIndex
from blogcore.services import post_query, post_service

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])


@router.get("", response_model=PostPage)
async def list_posts(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    index: PostsSearchIndex = Depends(get_search_index),
):
    if pagination.search is not None:
        return await post_query.search_posts(
            db, index, pagination.search, pagination.offset, pagination.limit, pagination.start_id
        )
    return await post_query.list_posts(db, pagination.offset, pagination.limit, pagination.start_id)


@router.post("/reindex", response_model=ReindexResponse)
async def reindex_posts(
    db: AsyncSession = Depends(get_db),
    index: PostsSearchIndex = Depends(get_search_index),
):
    return await post_service.rebuild_search_index(db, index)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: int, db: AsyncSession = Depends(get_db)):
    return await post_service.get_post(db, post_id)


@router.post("", status_code=201, response_model=PostResponse)
async def create_post(
    data: PostCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    index: PostsSearchIndex = Depends(get_search_index),
):
    return await post_service.create_post(db, index, data, user_id)


@router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: int,
    data: PostUpdate,
    db: AsyncSession = Depends(get_db),
    index: PostsSearchIndex = Depends(get_search_index),
):
    return await post_service.update_post(db, index, post_id, data)


@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: int,
    db: AsyncSession = Depends(get_db),
    index: PostsSearchIndex = Depends(get_search_index),
):
    await post_service.delete_post(db, index, post_id)
