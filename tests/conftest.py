"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite, shared through StaticPool so every
  session sees the same connection (an in-memory database is
  connection-scoped).
- ``get_db`` is overridden with the test session factory.
- The search index and both buckets are replaced by the in-memory doubles
  in ``tests/fakes.py`` through the ``get_search_index`` /
  ``get_public_storage`` / ``get_private_storage`` dependencies.  The
  doubles have failure switches so partial-failure paths can be driven
  from a test.
- Tables are created before and dropped after each test.
- Redis is disabled (``cache._redis = None``); the PostCache treats that
  as a permanent miss.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from blogcore.cache import cache
from blogcore.database import Base, get_db
from blogcore.dependencies import get_private_storage, get_public_storage, get_search_index
from blogcore.main import app
from blogcore.middleware import install_query_counter
from blogcore.services.consistency import sync_failures
from tests.fakes import InMemoryObjectStorage, InMemorySearchIndex

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    sync_failures.reset()
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_test() as session:
        yield session


@pytest.fixture
def search_index() -> InMemorySearchIndex:
    return InMemorySearchIndex()


@pytest.fixture
def public_storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage("test-public")


@pytest.fixture
def private_storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage("test-private")


@pytest_asyncio.fixture
async def async_client(search_index, public_storage, private_storage) -> AsyncClient:
    """httpx client wired to the app, with the in-memory secondary stores."""
    overrides = {
        get_search_index: lambda: search_index,
        get_public_storage: lambda: public_storage,
        get_private_storage: lambda: private_storage,
    }
    app.dependency_overrides.update(overrides)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    for dependency in overrides:
        app.dependency_overrides.pop(dependency, None)
