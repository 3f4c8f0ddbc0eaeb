from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blogcore.database import Base

# ---------------------------------------------------------------------------
# Association table: Post <-> Category (many-to-many)
# ---------------------------------------------------------------------------
post_categories = Table(
    "post_categories",
    Base.metadata,
    Column("post_id", Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# File references
# ---------------------------------------------------------------------------
class PublicFile(Base):
    """Metadata for an object in the public bucket (avatars)."""

    __tablename__ = "public_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(400), unique=True, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)


class PrivateFile(Base):
    """Metadata for an object in the private bucket, owned by one user."""

    __tablename__ = "private_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(400), unique=True, nullable=False)
    owner_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    owner: Mapped["User"] = relationship("User", back_populates="files", lazy="noload")


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # unique=True makes the avatar slot one-to-one.
    avatar_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("public_files.id", ondelete="SET NULL"), unique=True, nullable=True
    )

    # Relationships: lazy="noload" enforces explicit eager loading in services
    avatar: Mapped[Optional["PublicFile"]] = relationship("PublicFile", lazy="noload")
    posts: Mapped[List["Post"]] = relationship("Post", back_populates="author", lazy="noload")
    files: Mapped[List["PrivateFile"]] = relationship(
        "PrivateFile", back_populates="owner", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------
class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    posts: Mapped[List["Post"]] = relationship(
        "Post", secondary=post_categories, back_populates="categories", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    # Ordered list of non-empty paragraph strings.
    paragraphs: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    author: Mapped["User"] = relationship("User", back_populates="posts", lazy="noload")
    categories: Mapped[List["Category"]] = relationship(
        "Category", secondary=post_categories, back_populates="posts", lazy="noload"
    )
