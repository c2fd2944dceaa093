"""
Tiered cache generations for Offline Edge.

Three tiers (static assets, navigable documents, API payloads) each live in a
generation named "{tier}-v{version}". Generations are stored through an
injected CacheStorage backend: in memory for tests and single-process hosts,
Redis when the cache must outlive the process.
"""

import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

from ..config import OfflineSettings, CacheBackend
from ..exceptions import StorageUnavailable
from ...transport.http_client import Request, Response, normalize_url

logger = structlog.get_logger(__name__)


class CacheTier(str, Enum):
    """Cache tiers; each one has a generation per version."""
    STATIC = "static"
    DYNAMIC = "dynamic"
    API = "api"


@dataclass(frozen=True)
class Fingerprint:
    """Normalized (method, URL) pair addressing a cache entry."""
    method: str
    url: str

    @classmethod
    def from_request(cls, request: Request, origin: Optional[str] = None) -> 'Fingerprint':
        return cls(method=request.method.upper(), url=normalize_url(request.url, origin))

    @classmethod
    def for_path(cls, path: str, origin: Optional[str] = None) -> 'Fingerprint':
        return cls(method="GET", url=normalize_url(path, origin))

    @property
    def key(self) -> str:
        return f"{self.method} {self.url}"


@dataclass(frozen=True)
class CachedResponse:
    """A stored response; replaced wholesale on re-fetch."""
    status: int
    headers: Dict[str, str]
    body: bytes
    stored_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_response(cls, response: Response) -> 'CachedResponse':
        return cls(status=response.status, headers=dict(response.headers), body=response.body)

    def to_response(self, url: Optional[str] = None) -> Response:
        return Response(status=self.status, headers=dict(self.headers), body=self.body,
                        url=url, from_cache=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "status": self.status,
            "headers": self.headers,
            "body": base64.b64encode(self.body).decode("ascii"),
            "stored_at": self.stored_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CachedResponse':
        return cls(
            status=int(data["status"]),
            headers=dict(data.get("headers") or {}),
            body=base64.b64decode(data.get("body") or ""),
            stored_at=datetime.fromisoformat(data["stored_at"]),
        )


class CacheStorage(ABC):
    """Named-generation storage backend."""

    @abstractmethod
    async def open(self, name: str) -> None:
        """Create the generation if absent."""

    @abstractmethod
    async def get(self, name: str, key: str) -> Optional[CachedResponse]:
        """Return the entry or None on a miss."""

    @abstractmethod
    async def put(self, name: str, key: str, entry: CachedResponse) -> None:
        """Store an entry, creating the generation if needed."""

    @abstractmethod
    async def keys(self, name: str) -> List[str]:
        """List entry keys of a generation."""

    @abstractmethod
    async def names(self) -> Set[str]:
        """List existing generation names."""

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Delete a whole generation."""

    async def close(self) -> None:
        return None


class MemoryCacheStorage(CacheStorage):
    """In-process generation storage."""

    def __init__(self):
        self.generations: Dict[str, Dict[str, CachedResponse]] = {}

    async def open(self, name: str) -> None:
        self.generations.setdefault(name, {})

    async def get(self, name: str, key: str) -> Optional[CachedResponse]:
        return self.generations.get(name, {}).get(key)

    async def put(self, name: str, key: str, entry: CachedResponse) -> None:
        self.generations.setdefault(name, {})[key] = entry

    async def keys(self, name: str) -> List[str]:
        return list(self.generations.get(name, {}))

    async def names(self) -> Set[str]:
        return set(self.generations)

    async def delete(self, name: str) -> bool:
        return self.generations.pop(name, None) is not None


class RedisCacheStorage(CacheStorage):
    """
    Redis-backed generation storage.

    Layout: a set "{prefix}:generations" of names and one hash
    "{prefix}:generation:{name}" of fingerprint key to serialized entry.
    """

    def __init__(self, redis_url: str, db: int = 0, prefix: str = "offline-edge",
                 client: Optional[Redis] = None):
        self.redis_url = redis_url
        self.db = db
        self.prefix = prefix
        self.redis_client: Optional[Redis] = client

    @property
    def _names_key(self) -> str:
        return f"{self.prefix}:generations"

    def _generation_key(self, name: str) -> str:
        return f"{self.prefix}:generation:{name}"

    async def connect(self) -> None:
        """Connect to Redis."""
        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(self.redis_url, db=self.db, decode_responses=False)
            await self.redis_client.ping()
            logger.info("Connected to Redis cache storage", prefix=self.prefix)
        except (RedisError, OSError) as e:
            self.redis_client = None
            logger.error("Failed to connect to Redis cache storage", error=str(e))
            raise StorageUnavailable(f"Redis cache storage unavailable: {e}") from e

    async def close(self) -> None:
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Disconnected from Redis cache storage")

    async def _client(self) -> Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def open(self, name: str) -> None:
        client = await self._client()
        try:
            await client.sadd(self._names_key, name)
        except RedisError as e:
            raise StorageUnavailable(f"Cannot open generation {name}: {e}") from e

    async def get(self, name: str, key: str) -> Optional[CachedResponse]:
        client = await self._client()
        try:
            data = await client.hget(self._generation_key(name), key)
        except RedisError as e:
            raise StorageUnavailable(f"Cannot read generation {name}: {e}") from e
        if data is None:
            return None
        return CachedResponse.from_dict(json.loads(data.decode("utf-8")))

    async def put(self, name: str, key: str, entry: CachedResponse) -> None:
        client = await self._client()
        payload = json.dumps(entry.to_dict()).encode("utf-8")
        try:
            pipe = client.pipeline()
            pipe.sadd(self._names_key, name)
            pipe.hset(self._generation_key(name), key, payload)
            await pipe.execute()
        except RedisError as e:
            raise StorageUnavailable(f"Cannot write generation {name}: {e}") from e

    async def keys(self, name: str) -> List[str]:
        client = await self._client()
        try:
            raw_keys = await client.hkeys(self._generation_key(name))
        except RedisError as e:
            raise StorageUnavailable(f"Cannot list generation {name}: {e}") from e
        return [k.decode("utf-8") if isinstance(k, bytes) else k for k in raw_keys]

    async def names(self) -> Set[str]:
        client = await self._client()
        try:
            raw_names = await client.smembers(self._names_key)
        except RedisError as e:
            raise StorageUnavailable(f"Cannot list generations: {e}") from e
        return {n.decode("utf-8") if isinstance(n, bytes) else n for n in raw_names}

    async def delete(self, name: str) -> bool:
        client = await self._client()
        try:
            pipe = client.pipeline()
            pipe.srem(self._names_key, name)
            pipe.delete(self._generation_key(name))
            removed, _ = await pipe.execute()
        except RedisError as e:
            raise StorageUnavailable(f"Cannot delete generation {name}: {e}") from e
        return bool(removed)


class CacheGenerationHandle:
    """A generation opened by name."""

    def __init__(self, storage: CacheStorage, name: str):
        self.storage = storage
        self.name = name

    async def lookup(self, fingerprint: Fingerprint) -> Optional[CachedResponse]:
        return await self.storage.get(self.name, fingerprint.key)

    async def store(self, fingerprint: Fingerprint, response: CachedResponse) -> None:
        await self.storage.put(self.name, fingerprint.key, response)

    def __repr__(self):
        return f"<CacheGenerationHandle(name='{self.name}')>"


class CacheTierManager:
    """Owns the static, dynamic and api generations of the current version."""

    def __init__(self, storage: CacheStorage, version: str):
        self.storage = storage
        self.version = version
        self.stats = {
            'hits': 0,
            'misses': 0,
            'stores': 0,
            'generations_deleted': 0,
        }

    def generation_name(self, tier: CacheTier) -> str:
        return f"{CacheTier(tier).value}-v{self.version}"

    def current_generation_names(self) -> Set[str]:
        return {self.generation_name(tier) for tier in CacheTier}

    async def open(self, tier: CacheTier) -> CacheGenerationHandle:
        """Open the tier's generation, creating it if absent."""
        name = self.generation_name(tier)
        await self.storage.open(name)
        return CacheGenerationHandle(self.storage, name)

    async def lookup(self, tier: CacheTier, fingerprint: Fingerprint) -> Optional[CachedResponse]:
        if fingerprint.method != "GET":
            return None
        entry = await self.storage.get(self.generation_name(tier), fingerprint.key)
        if entry is None:
            self.stats['misses'] += 1
        else:
            self.stats['hits'] += 1
        return entry

    async def store(self, tier: CacheTier, fingerprint: Fingerprint, response: CachedResponse) -> None:
        if fingerprint.method != "GET":
            raise ValueError(f"Only GET responses are cached, got {fingerprint.method}")
        await self.storage.put(self.generation_name(tier), fingerprint.key, response)
        self.stats['stores'] += 1
        logger.debug("Stored cache entry", generation=self.generation_name(tier), key=fingerprint.key)

    async def match(self, fingerprint: Fingerprint,
                     tiers: Iterable[CacheTier] = (CacheTier.DYNAMIC, CacheTier.STATIC, CacheTier.API)
                     ) -> Optional[CachedResponse]:
        """First hit across the given tiers, in order."""
        for tier in tiers:
            entry = await self.lookup(tier, fingerprint)
            if entry is not None:
                return entry
        return None

    async def list_generation_names(self) -> Set[str]:
        return await self.storage.names()

    async def entry_counts(self) -> Dict[str, int]:
        """Number of entries held by each existing generation."""
        return {name: len(await self.storage.keys(name)) for name in sorted(await self.storage.names())}

    async def delete_generations_not_in(self, keep: Iterable[str]) -> List[str]:
        """Delete every existing generation whose name is not in `keep`."""
        keep_set = set(keep)
        stale = sorted((await self.storage.names()) - keep_set)
        deleted = []
        for name in stale:
            if await self.storage.delete(name):
                deleted.append(name)
                logger.info("Deleted stale cache generation", generation=name)
        self.stats['generations_deleted'] += len(deleted)
        return deleted

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats['hits'] + self.stats['misses']
        return {
            **self.stats,
            'hit_rate': self.stats['hits'] / total if total else 0,
            'version': self.version,
        }


def create_cache_storage(settings: OfflineSettings) -> CacheStorage:
    """Build the configured storage backend."""
    if settings.cache_backend == CacheBackend.REDIS:
        return RedisCacheStorage(
            redis_url=settings.redis_url,
            db=settings.redis_db,
            prefix=settings.redis_key_prefix,
        )
    return MemoryCacheStorage()
