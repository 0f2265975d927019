import os
from pathlib import Path

# main.py reads DATABASE_URL at import time; tests swap in their own engine.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app import order_store  # noqa: E402
from app.directory import DirectoryClient  # noqa: E402

DIRECTORY_URL = "http://directory.test/api"

GEORGE = {"email": "george.bluth@reqres.in", "first_name": "George", "last_name": "Bluth"}
JANET = {"email": "janet.weaver@reqres.in", "first_name": "Janet", "last_name": "Weaver"}
EMMA = {"email": "emma.wong@reqres.in", "first_name": "Emma", "last_name": "Wong"}


class StubDirectory:
    """Serves /users?page=N from a list of pages and records every request."""

    def __init__(self, *pages, total_pages=None, status_code=200):
        self.pages = [list(p) for p in pages]
        self.total_pages = len(self.pages) if total_pages is None else total_pages
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})
        page = int(request.url.params["page"])
        users = self.pages[page - 1] if page <= len(self.pages) else []
        return httpx.Response(
            200,
            json={"page": page, "total_pages": self.total_pages, "data": users},
        )

    @property
    def pages_requested(self) -> list[int]:
        return [int(r.url.params["page"]) for r in self.requests]

    def client(self, **kwargs) -> DirectoryClient:
        return DirectoryClient.create(
            DIRECTORY_URL, transport=httpx.MockTransport(self), **kwargs
        )


def pytest_collection_modifyitems(config, items):
    """Mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))
        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await order_store.create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
