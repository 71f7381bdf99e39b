"""Shared pytest fixtures for storage, pipeline and API tests."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortener.config import Settings
from shortener.main import create_app
from shortener.storage.base import URLStorage
from shortener.storage.file import FileURLStorage
from shortener.storage.lifecycle import StorageLifecycle, init_storage
from shortener.storage.sql import SQLURLStorage


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "FILE_STORAGE_PATH": str(tmp_path / "url_storage.json"),
        "DATABASE_DSN": "",
        "SECRET_KEY": "test-secret",
        "BASE_URL": "http://localhost:8080",
        "STORAGE_TIMEOUT_SECONDS": 5.0,
        "DELETE_WORKERS": 8,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def sqlite_dsn(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'urls.db'}"


async def eventually(check: Callable[[], Awaitable[bool]], timeout: float = 2.0) -> None:
    """Poll ``check`` until it returns True or ``timeout`` elapses."""
    async with asyncio.timeout(timeout):
        while not await check():
            await asyncio.sleep(0.01)


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """Build settings rooted in the test's temporary directory."""
    return lambda **overrides: make_settings(tmp_path, **overrides)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return eventually


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def sql_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path, DATABASE_DSN=sqlite_dsn(tmp_path))


@pytest_asyncio.fixture(params=["file", "sql"])
async def storage(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[URLStorage, None]:
    if request.param == "file":
        store: URLStorage = FileURLStorage(tmp_path / "url_storage.json", default_timeout=5.0)
    else:
        store = SQLURLStorage.from_settings(make_settings(tmp_path, DATABASE_DSN=sqlite_dsn(tmp_path)))
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def file_storage(tmp_path: Path) -> AsyncGenerator[FileURLStorage, None]:
    store = FileURLStorage(tmp_path / "url_storage.json", default_timeout=5.0)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def lifecycle(settings: Settings) -> AsyncGenerator[StorageLifecycle, None]:
    handle = await init_storage(settings)
    yield handle
    if not handle.closed:
        await handle.shutdown()


@pytest_asyncio.fixture
async def app(settings: Settings):
    application = create_app(settings, instrument=False)
    manager = application.state.service_manager
    await manager.initialize()
    yield application
    await manager.cleanup()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest_asyncio.fixture
async def other_client(app) -> AsyncGenerator[AsyncClient, None]:
    """A second user: separate cookie jar, same application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
