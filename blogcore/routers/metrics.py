from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.cache import cache
from blogcore.database import get_db
from blogcore.models import Post, PrivateFile, PublicFile, User
from blogcore.schemas import MetricsResponse
from blogcore.services.consistency import sync_failures

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):
    return MetricsResponse(
        total_posts=await _count(db, Post),
        total_users=await _count(db, User),
        total_public_files=await _count(db, PublicFile),
        total_private_files=await _count(db, PrivateFile),
        cache_info=cache.stats,
        sync_failures=sync_failures.stats,
    )
