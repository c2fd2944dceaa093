"""
Interception - Request gateway

This module applies a caching policy to every outbound GET request:
- static assets: cache first
- API payloads: network first, falling back to the api generation and, for
  critical resources, to a synthesized offline marker
- navigable documents: stale while revalidate, falling back to the offline
  document

Side-effecting requests pass straight through; enqueueing undeliverable ones
is the host application's responsibility.
"""
import asyncio
import json
from typing import Optional, Set, Dict, Any

import structlog

from ..shared.caching.cache_manager import CacheTierManager, CacheTier, CachedResponse, Fingerprint
from ..shared.config import OfflineSettings
from ..shared.exceptions import NetworkUnavailable, StorageUnavailable
from ..shared.schemas import RequestClass
from ..transport.http_client import Fetcher, Request, Response
from .classifier import RequestClassifier

logger = structlog.get_logger(__name__)

OFFLINE_MARKER = {"offline": True}


def offline_marker_response(url: Optional[str] = None) -> Response:
    """The synthesized payload returned for critical API resources while offline."""
    return Response(
        status=200,
        headers={"Content-Type": "application/json"},
        body=json.dumps(OFFLINE_MARKER).encode("utf-8"),
        url=url,
    )


class InterceptionGateway:
    """
    Classifies outbound requests and serves them under per-class caching policies.

    The cache tier manager and fetcher are injected so hosts and tests decide
    where generations live and how the network is reached.
    """

    def __init__(self, cache: CacheTierManager, fetcher: Fetcher,
                 classifier: Optional[RequestClassifier] = None,
                 origin: Optional[str] = None,
                 offline_document: str = "/offline.html"):
        self.cache = cache
        self.fetcher = fetcher
        self.classifier = classifier or RequestClassifier()
        self.origin = origin
        self.offline_document = offline_document

        self._background: Set[asyncio.Task] = set()
        self.stats = {
            'passthrough': 0,
            'static_hits': 0,
            'api_fallbacks': 0,
            'offline_markers': 0,
            'stale_served': 0,
            'offline_documents': 0,
            'revalidation_failures': 0,
        }

    @classmethod
    def from_settings(cls, settings: OfflineSettings, cache: CacheTierManager,
                      fetcher: Fetcher) -> 'InterceptionGateway':
        classifier = RequestClassifier(
            api_prefix=settings.api_prefix,
            static_extensions=settings.static_extensions,
            critical_paths=settings.critical_paths,
        )
        return cls(cache, fetcher, classifier=classifier, origin=settings.origin,
                   offline_document=settings.offline_document)

    async def handle(self, request: Request) -> Response:
        """Serve a request under the policy of its class."""
        if request.method.upper() != "GET":
            self.stats['passthrough'] += 1
            return await self.fetcher.fetch(request)

        request_class = self.classifier.classify(request)
        fingerprint = Fingerprint.from_request(request, self.origin)

        try:
            if request_class == RequestClass.STATIC:
                return await self._cache_first(request, fingerprint)
            if request_class == RequestClass.API:
                return await self._network_first(request, fingerprint)
            return await self._stale_while_revalidate(request, fingerprint)
        except StorageUnavailable as e:
            logger.error("Cache storage unavailable, aborting request",
                         url=fingerprint.url, request_class=request_class.value, error=str(e))
            raise

    async def _cache_first(self, request: Request, fingerprint: Fingerprint) -> Response:
        cached = await self.cache.lookup(CacheTier.STATIC, fingerprint)
        if cached is not None:
            self.stats['static_hits'] += 1
            return cached.to_response(fingerprint.url)

        try:
            response = await self.fetcher.fetch(request)
        except NetworkUnavailable:
            logger.info("Static asset unavailable", url=fingerprint.url)
            raise

        if response.ok:
            await self.cache.store(CacheTier.STATIC, fingerprint, CachedResponse.from_response(response))
        return response

    async def _network_first(self, request: Request, fingerprint: Fingerprint) -> Response:
        network_error: Optional[NetworkUnavailable] = None
        response: Optional[Response] = None

        try:
            response = await self.fetcher.fetch(request)
            if response.ok:
                await self.cache.store(CacheTier.API, fingerprint, CachedResponse.from_response(response))
                return response
        except NetworkUnavailable as e:
            network_error = e

        logger.info("Network failed, trying cache", url=fingerprint.url,
                    status=response.status if response else None)

        cached = await self.cache.lookup(CacheTier.API, fingerprint)
        if cached is not None:
            self.stats['api_fallbacks'] += 1
            return cached.to_response(fingerprint.url)

        if self.classifier.is_critical(request):
            self.stats['offline_markers'] += 1
            return offline_marker_response(fingerprint.url)

        if network_error is not None:
            raise network_error
        return response

    async def _stale_while_revalidate(self, request: Request, fingerprint: Fingerprint) -> Response:
        cached = await self.cache.match(fingerprint, tiers=(CacheTier.DYNAMIC, CacheTier.STATIC))

        if cached is not None:
            self.stats['stale_served'] += 1
            task = asyncio.create_task(self._revalidate(request, fingerprint))
            self._background.add(task)
            task.add_done_callback(self._revalidation_done)
            return cached.to_response(fingerprint.url)

        try:
            response = await self.fetcher.fetch(request)
        except NetworkUnavailable:
            offline = await self.cache.match(
                Fingerprint.for_path(self.offline_document, self.origin),
                tiers=(CacheTier.STATIC, CacheTier.DYNAMIC),
            )
            if offline is None:
                raise
            self.stats['offline_documents'] += 1
            logger.info("Serving offline document", url=fingerprint.url)
            return offline.to_response(fingerprint.url)

        if response.ok:
            await self.cache.store(CacheTier.DYNAMIC, fingerprint, CachedResponse.from_response(response))
        return response

    async def _revalidate(self, request: Request, fingerprint: Fingerprint) -> None:
        try:
            response = await self.fetcher.fetch(request)
            if response.ok:
                await self.cache.store(CacheTier.DYNAMIC, fingerprint, CachedResponse.from_response(response))
        except (NetworkUnavailable, StorageUnavailable) as e:
            self.stats['revalidation_failures'] += 1
            logger.debug("Background revalidation failed", url=fingerprint.url, error=str(e))

    def _revalidation_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.stats['revalidation_failures'] += 1
            logger.error("Background revalidation crashed",
                         error_type=type(error).__name__, error=str(error))

    async def wait_for_background(self) -> None:
        """Wait for pending background revalidations."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @property
    def pending_revalidations(self) -> int:
        return len(self._background)

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, 'pending_revalidations': self.pending_revalidations}
