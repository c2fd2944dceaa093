"""
Cache warming for Offline Edge.

Loads resources into cache generations ahead of need: the all-or-nothing warm
used for the static manifest and WARM_URLS, the best-effort "settle all"
pre-warm of API paths, and the periodic refresh of a fixed set of API paths.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Iterable, List, Optional

import structlog

from ..exceptions import OfflineEdgeError, NetworkUnavailable, StorageUnavailable
from ...transport.http_client import Fetcher, Request, Response
from .cache_manager import CacheTierManager, CacheTier, CachedResponse, Fingerprint

logger = structlog.get_logger(__name__)


async def settle_all(tasks: Iterable[Awaitable[Any]]) -> int:
    """
    Run independent tasks concurrently and wait for all of them.

    Individual errors are discarded; returns how many tasks completed
    without raising.
    """
    results = await asyncio.gather(*tasks, return_exceptions=True)
    return sum(1 for result in results if not isinstance(result, BaseException))


class WarmingFailed(OfflineEdgeError):
    """Raised by warm_all when any path cannot be fetched with an ok response."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to warm {path}: {reason}")


async def _fetch_ok(fetcher: Fetcher, path: str) -> Response:
    response = await fetcher.fetch(Request(url=path))
    if not response.ok:
        raise WarmingFailed(path, f"status {response.status}")
    return response


async def warm_all(cache: CacheTierManager, fetcher: Fetcher, tier: CacheTier,
                   paths: List[str], origin: Optional[str] = None) -> int:
    """
    Fetch every path and store all of them, or store nothing.

    Any network failure or non-ok response raises WarmingFailed before a
    single entry is written.
    """
    handle = await cache.open(tier)

    async def fetch_one(path: str):
        try:
            return path, await _fetch_ok(fetcher, path)
        except NetworkUnavailable as e:
            raise WarmingFailed(path, str(e)) from e

    fetched = await asyncio.gather(*(fetch_one(path) for path in paths), return_exceptions=True)
    for result in fetched:
        if isinstance(result, BaseException):
            raise result

    for path, response in fetched:
        await handle.store(Fingerprint.for_path(path, origin), CachedResponse.from_response(response))

    logger.info("Warmed cache generation", generation=handle.name, entries=len(fetched))
    return len(fetched)


async def prewarm(cache: CacheTierManager, fetcher: Fetcher, tier: CacheTier,
                  paths: List[str], origin: Optional[str] = None) -> int:
    """Best-effort warm: each path independent, failures tolerated individually."""
    handle = await cache.open(tier)

    async def warm_one(path: str) -> None:
        response = await fetcher.fetch(Request(url=path))
        if response.ok:
            await handle.store(Fingerprint.for_path(path, origin), CachedResponse.from_response(response))
        else:
            raise WarmingFailed(path, f"status {response.status}")

    warmed = await settle_all(warm_one(path) for path in paths)
    logger.info("Pre-warmed cache generation", generation=handle.name,
                warmed=warmed, requested=len(paths))
    return warmed


class PeriodicRefresher:
    """Refreshes a fixed set of API paths into the api generation on a scheduler tag."""

    def __init__(self, cache: CacheTierManager, fetcher: Fetcher, paths: List[str],
                 tag: str = "update-dashboard", origin: Optional[str] = None):
        self.cache = cache
        self.fetcher = fetcher
        self.paths = list(paths)
        self.tag = tag
        self.origin = origin

        self.running = False
        self.worker_task: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None

        self.stats = {
            'runs': 0,
            'paths_refreshed': 0,
            'paths_failed': 0,
            'total_refresh_time': 0.0,
        }

    async def handle_periodic_sync(self, tag: str) -> bool:
        """Run a refresh if the tag is ours; other tags are ignored."""
        if tag != self.tag:
            logger.debug("Ignoring periodic sync tag", tag=tag, expected=self.tag)
            return False
        await self.refresh()
        return True

    async def refresh(self) -> int:
        """Fetch each path once and store ok responses; failures are logged only."""
        start_time = time.time()
        refreshed = 0

        for path in self.paths:
            try:
                response = await self.fetcher.fetch(Request(url=path))
                if not response.ok:
                    logger.warning("Background refresh got non-ok response", path=path, status=response.status)
                    self.stats['paths_failed'] += 1
                    continue
                await self.cache.store(CacheTier.API, Fingerprint.for_path(path, self.origin),
                                       CachedResponse.from_response(response))
                refreshed += 1
            except (NetworkUnavailable, StorageUnavailable) as e:
                logger.warning("Background refresh failed", path=path, error=str(e))
                self.stats['paths_failed'] += 1

        duration = time.time() - start_time
        self.stats['runs'] += 1
        self.stats['paths_refreshed'] += refreshed
        self.stats['total_refresh_time'] += duration
        self.last_run = datetime.now(timezone.utc)

        logger.info("Background refresh completed", refreshed=refreshed,
                    requested=len(self.paths), duration=round(duration, 3))
        return refreshed

    async def start(self, interval_seconds: int) -> None:
        """Start a refresh loop for hosts without their own scheduler."""
        if self.running:
            logger.warning("Periodic refresher is already running")
            return

        self.running = True
        self.worker_task = asyncio.create_task(self._scheduler_worker(interval_seconds))
        logger.info("Periodic refresher started", interval_seconds=interval_seconds)

    async def stop(self) -> None:
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass
            self.worker_task = None

        logger.info("Periodic refresher stopped")

    async def _scheduler_worker(self, interval_seconds: int) -> None:
        while self.running:
            await asyncio.sleep(interval_seconds)
            try:
                await self.handle_periodic_sync(self.tag)
            except Exception as e:
                logger.error("Error in periodic refresh loop", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'tag': self.tag,
            'paths': self.paths,
            'running': self.running,
            'last_run': self.last_run.isoformat() if self.last_run else None,
        }
