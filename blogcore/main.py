import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blogcore.cache import cache
from blogcore.exceptions import BlogError, SearchIndexError
from blogcore.middleware import DiagnosticsMiddleware
from blogcore.routers import categories, metrics, posts, users
from blogcore.search_index import posts_index

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await cache.connect()
    try:
        await posts_index.connect()
    except SearchIndexError as exc:
        # Writes still commit; search requests fail until the index is back.
        logger.error("Search index unavailable at startup: %s", exc)
    yield
    await posts_index.disconnect()
    await cache.disconnect()


app = FastAPI(
    title="Blog API",
    description="Posts with full-text search, avatars and private files",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(BlogError)
async def blog_error_handler(request: Request, exc: BlogError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Middleware
app.add_middleware(DiagnosticsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(posts.router)
app.include_router(users.router)
app.include_router(categories.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
