import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

TEST_DB_URL = os.getenv("TEST_DATABASE_URL") or "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("DATABASE_URL", TEST_DB_URL)
os.environ.pop("REDIS_URL", None)

from studio.agents.executor import build_agents  # noqa: E402
from studio.db.session import init_db, make_engine  # noqa: E402
from studio.main import app  # noqa: E402
from studio.memory.context_memory import ContextMemoryStore  # noqa: E402
from studio.memory.documents import DocumentStore  # noqa: E402
from studio.storage import MemoryImageStore  # noqa: E402
from studio.workflows.orchestration import RunRegistry  # noqa: E402

from fakes import FakeBackend  # noqa: E402


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def memory_store():
    return ContextMemoryStore()


@pytest.fixture
def agents(backend, memory_store):
    return build_agents(backend, memory_store, pass_threshold=70)


@pytest.fixture
def image_store():
    return MemoryImageStore(ttl_seconds=600)


@pytest_asyncio.fixture
async def db_engine():
    engine = make_engine(TEST_DB_URL)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def document_store(db_engine):
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False, class_=AsyncSession)
    return DocumentStore(session_factory)


@pytest_asyncio.fixture
async def api_client(backend, memory_store, image_store, document_store):
    """HTTP client against the app with every shared service replaced by a test double."""
    saved = dict(app.state._state)
    app.state.backend = backend
    app.state.memory_store = memory_store
    app.state.image_store = image_store
    app.state.document_store = document_store
    app.state.run_registry = RunRegistry()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.state._state.clear()
    app.state._state.update(saved)
