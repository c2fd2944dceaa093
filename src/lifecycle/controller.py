"""
Lifecycle - Install and activation

Takes one version of the offline layer from parsed to activated:
1. install: cache the whole static manifest or fail, then pre-warm API paths
2. skip waiting: activate without waiting for old application instances
3. activate: evict generations of other versions and claim open instances
"""
from typing import List, Optional

import structlog

from ..notifications.clients import ClientRegistry
from ..shared.caching.cache_manager import CacheTierManager, CacheTier
from ..shared.caching.cache_warming import WarmingFailed, prewarm, warm_all
from ..shared.config import OfflineSettings
from ..shared.exceptions import InstallationFailed, LifecycleError
from ..shared.schemas import LifecycleState
from ..transport.http_client import Fetcher

logger = structlog.get_logger(__name__)


class LifecycleController:
    """Drives the install and activation of the current version."""

    def __init__(
        self,
        cache: CacheTierManager,
        fetcher: Fetcher,
        clients: ClientRegistry,
        static_manifest: List[str],
        api_prewarm_paths: Optional[List[str]] = None,
        origin: Optional[str] = None,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.clients = clients
        self.static_manifest = list(static_manifest)
        self.api_prewarm_paths = list(api_prewarm_paths or [])
        self.origin = origin

        self.state = LifecycleState.PARSED
        self._skip_waiting = False
        self.evicted: List[str] = []

    @classmethod
    def from_settings(cls, settings: OfflineSettings, cache: CacheTierManager,
                      fetcher: Fetcher, clients: ClientRegistry) -> 'LifecycleController':
        return cls(
            cache,
            fetcher,
            clients,
            static_manifest=settings.static_manifest,
            api_prewarm_paths=settings.api_prewarm_paths,
            origin=settings.origin,
        )

    @property
    def version(self) -> str:
        return self.cache.version

    @property
    def is_waiting(self) -> bool:
        """An installed version that has not been told to activate yet."""
        return self.state == LifecycleState.INSTALLED and not self._skip_waiting

    async def install(self) -> int:
        """
        Populate the static generation from the manifest.

        Every manifest entry must be fetched with an ok response, otherwise
        nothing is stored, the version becomes redundant and
        InstallationFailed is raised. API pre-warm failures are tolerated.

        Returns:
            Number of API paths pre-warmed
        """
        if self.state not in (LifecycleState.PARSED, LifecycleState.REDUNDANT):
            raise LifecycleError(f"Cannot install from state {self.state.value}")

        self.state = LifecycleState.INSTALLING
        logger.info("Installing offline layer", version=self.version,
                    manifest_size=len(self.static_manifest))

        try:
            await warm_all(self.cache, self.fetcher, CacheTier.STATIC, self.static_manifest, self.origin)
        except WarmingFailed as e:
            self.state = LifecycleState.REDUNDANT
            logger.error("Installation failed", version=self.version, path=e.path, reason=e.reason)
            raise InstallationFailed(str(e)) from e

        warmed = await prewarm(self.cache, self.fetcher, CacheTier.API, self.api_prewarm_paths, self.origin)

        self.state = LifecycleState.INSTALLED
        self.skip_waiting()
        logger.info("Installation complete", version=self.version, api_prewarmed=warmed)
        return warmed

    def skip_waiting(self) -> None:
        """Activate as soon as installed, without waiting for old instances to close."""
        self._skip_waiting = True
        logger.debug("Skip waiting requested", version=self.version, state=self.state.value)

    async def activate(self) -> List[str]:
        """
        Evict every generation outside the current version and claim open instances.

        Returns:
            Names of the deleted generations
        """
        if self.state != LifecycleState.INSTALLED:
            raise LifecycleError(f"Cannot activate from state {self.state.value}")

        self.state = LifecycleState.ACTIVATING
        deleted = await self.cache.delete_generations_not_in(self.cache.current_generation_names())
        claimed = await self.clients.claim(self.version)

        self.evicted = deleted
        self.state = LifecycleState.ACTIVATED
        logger.info("Activated offline layer", version=self.version,
                    evicted=deleted, clients_claimed=claimed)
        return deleted
