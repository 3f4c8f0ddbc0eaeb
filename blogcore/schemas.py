from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# --- Files ---

class PublicFileResponse(BaseModel):
    id: int
    key: str
    url: str
    model_config = ConfigDict(from_attributes=True)


class PrivateFileResponse(BaseModel):
    id: int
    key: str
    owner_id: int
    url: str | None = None  # presigned, only on listings
    model_config = ConfigDict(from_attributes=True)


# --- User ---

class UserBase(BaseModel):
    email: str = Field(max_length=255)
    name: NonEmptyStr = Field(max_length=150)


class UserCreate(UserBase):
    pass


class UserResponse(UserBase):
    id: int
    created_at: datetime
    avatar: PublicFileResponse | None = None
    model_config = ConfigDict(from_attributes=True)


# --- Category ---

class CategoryCreate(BaseModel):
    name: NonEmptyStr = Field(max_length=100)


class CategoryUpdate(BaseModel):
    name: NonEmptyStr | None = Field(None, max_length=100)


class CategoryResponse(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


class CategoryDetail(CategoryResponse):
    posts: list["PostResponse"] = []


# --- Post ---

class PostCreate(BaseModel):
    title: NonEmptyStr = Field(max_length=300)
    paragraphs: list[NonEmptyStr] = Field(min_length=1)
    category_ids: list[int] = []


class PostUpdate(BaseModel):
    title: NonEmptyStr | None = Field(None, max_length=300)
    paragraphs: list[NonEmptyStr] | None = Field(None, min_length=1)
    category_ids: list[int] | None = None


class PostResponse(BaseModel):
    id: int
    title: str
    paragraphs: list[str]
    author_id: int
    created_at: datetime
    categories: list[CategoryResponse] = []
    model_config = ConfigDict(from_attributes=True)


# --- Pagination ---

class PostPage(BaseModel):
    """
    One page of posts.

    ``count`` is the total for the unbounded query, also when the page was
    cut with a ``startId`` cursor, so clients can show "N available".
    """

    items: list[PostResponse]
    count: int


class ReindexResponse(BaseModel):
    indexed: int
    failed: int
    removed: int = 0


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_posts: int
    total_users: int
    total_public_files: int
    total_private_files: int
    cache_info: dict = {}
    sync_failures: dict = {}


# Required for forward-reference resolution (CategoryDetail.posts)
CategoryDetail.model_rebuild()
