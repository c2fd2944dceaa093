"""
Shared fixtures for Offline Edge tests.

FakeFetcher stands in for the network: routes are registered per method and
URL, every request is recorded, and the whole network or single URLs can be
taken offline.
"""
import asyncio
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio

from src.outbox.database import QueueDatabase
from src.outbox.mutation_queue import DurableMutationQueue
from src.shared.caching.cache_manager import CacheTierManager, MemoryCacheStorage
from src.shared.exceptions import NetworkUnavailable
from src.transport.http_client import Fetcher, Request, Response, normalize_url

ORIGIN = "http://localhost:3000"


class FakeFetcher(Fetcher):
    """In-memory network double."""

    def __init__(self, origin: str = ORIGIN):
        self.origin = origin
        self.routes: Dict[str, List[Response]] = {}
        self.failing: Set[str] = set()
        self.offline = False
        self.gate: Optional[asyncio.Event] = None
        self.requests: List[Request] = []
        self.closed = False

    def route(self, path: str, *statuses: int, body: bytes = b"ok", method: str = "GET",
              headers: Optional[Dict[str, str]] = None) -> None:
        """Register responses for a URL; the last one repeats once the others are used."""
        url = normalize_url(path, self.origin)
        self.routes[f"{method.upper()} {url}"] = [
            Response(status=status, headers=dict(headers or {"Content-Type": "text/plain"}), body=body, url=url)
            for status in (statuses or (200,))
        ]

    def fail(self, path: str) -> None:
        self.failing.add(normalize_url(path, self.origin))

    def calls_to(self, path: str, method: str = "GET") -> int:
        url = normalize_url(path, self.origin)
        return sum(
            1 for request in self.requests
            if request.method.upper() == method.upper() and normalize_url(request.url, self.origin) == url
        )

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def fetch(self, request: Request) -> Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()

        url = normalize_url(request.url, self.origin)
        if self.offline or url in self.failing:
            raise NetworkUnavailable(url, "offline")

        responses = self.routes.get(f"{request.method.upper()} {url}")
        if not responses:
            return Response(status=404, headers={}, body=b"not found", url=url)
        if len(responses) > 1:
            return responses.pop(0)
        return responses[0]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def origin():
    return ORIGIN


@pytest.fixture
def fetcher():
    """Network double with nothing routed."""
    return FakeFetcher()


@pytest.fixture
def storage():
    return MemoryCacheStorage()


@pytest.fixture
def cache(storage):
    """Cache tier manager for version 1 over in-memory storage."""
    return CacheTierManager(storage, "1")


@pytest.fixture
def queue_db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest_asyncio.fixture
async def queue_db(queue_db_url):
    """Initialized queue store backed by a SQLite file."""
    database = QueueDatabase(queue_db_url)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def queue(queue_db):
    return DurableMutationQueue(queue_db)
