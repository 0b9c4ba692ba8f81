from __future__ import annotations

import os
import tempfile

# Settings are cached on first use; pin the test environment before any cfiportal import.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), f'cfiportal-tests-{os.getpid()}.db')}",
)
os.environ["SESSION_BACKEND"] = "memory"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["PUBSUB_BACKEND"] = "memory"
os.environ["LLM_PROVIDER"] = "fake"
os.environ["GENERATION_EXECUTION_MODE"] = "inline"
os.environ["CFI_API_BASE_URL"] = "http://cfi.test/api"
os.environ["CFI_API_KEY"] = "test-api-key"

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from cfiportal.apps.api.main import create_app  # noqa: E402
from cfiportal.domain.models import Base  # noqa: E402
from cfiportal.persistence.db import engine  # noqa: E402
from cfiportal.services.cache import MemoryCache, set_cache  # noqa: E402
from cfiportal.services.cfi.client import RemoteApiClient, set_remote_client  # noqa: E402
from cfiportal.services.pubsub import MemoryPubSub, set_pubsub  # noqa: E402
from cfiportal.services.sessions import MemorySessionBackend, set_session_backend  # noqa: E402
from cfiportal.tests.utils.cfi import FakeCfiApi  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Rebuild the schema per test so rows never leak between tests.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def pubsub() -> MemoryPubSub:
    return MemoryPubSub()


@pytest.fixture(autouse=True)
def memory_backends(cache: MemoryCache, pubsub: MemoryPubSub) -> None:
    set_cache(cache)
    set_pubsub(pubsub)
    set_session_backend(MemorySessionBackend())
    yield
    set_cache(None)
    set_pubsub(None)
    set_session_backend(None)
    set_remote_client(None)


@pytest.fixture
def fake_cfi() -> FakeCfiApi:
    fake = FakeCfiApi()
    set_remote_client(RemoteApiClient(base_url="http://cfi.test/api", transport=httpx.MockTransport(fake.handler)))
    return fake


@pytest.fixture
async def client(fake_cfi: FakeCfiApi) -> AsyncClient:
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
