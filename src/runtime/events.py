"""
Runtime - Event dispatch

The offline runtime wires the components together and routes each host event
to exactly one handler through an explicit map from event kind to handler.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog
from pydantic import ValidationError

from ..interception.gateway import InterceptionGateway
from ..lifecycle.controller import LifecycleController
from ..notifications.clients import (
    ClientRegistry,
    InMemoryClientRegistry,
    InMemoryNotificationSurface,
    NotificationSurface,
)
from ..notifications.dispatcher import NotificationDispatcher
from ..outbox.database import QueueDatabase
from ..outbox.mutation_queue import DurableMutationQueue
from ..outbox.replay import ReplayCoordinator
from ..shared.caching.cache_manager import CacheStorage, CacheTier, CacheTierManager, create_cache_storage
from ..shared.caching.cache_warming import PeriodicRefresher, WarmingFailed, warm_all
from ..shared.config import OfflineSettings, get_offline_settings
from ..shared.exceptions import StorageUnavailable, UnsupportedEvent
from ..shared.logging_config import EventContext
from ..shared.schemas import (
    CommandMessage,
    CommandResult,
    CommandType,
    LifecycleState,
    NotificationClick,
    RuntimeStatus,
)
from ..transport.http_client import AiohttpFetcher, Fetcher, Request

logger = structlog.get_logger(__name__)


class EventKind(str, Enum):
    """Events a host can deliver to the runtime."""
    INSTALL = "install"
    ACTIVATE = "activate"
    FETCH = "fetch"
    SYNC = "sync"
    PERIODIC_SYNC = "periodic_sync"
    PUSH = "push"
    NOTIFICATION_CLICK = "notification_click"
    MESSAGE = "message"


class OfflineRuntime:
    """
    Composition root of the offline layer.

    Every component is injectable; `from_settings` builds the default wiring
    from configuration.
    """

    def __init__(
        self,
        settings: OfflineSettings,
        cache: CacheTierManager,
        fetcher: Fetcher,
        queue_database: QueueDatabase,
        clients: Optional[ClientRegistry] = None,
        surface: Optional[NotificationSurface] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.fetcher = fetcher
        self.queue_database = queue_database
        self.clients = clients or InMemoryClientRegistry()
        self.surface = surface or InMemoryNotificationSurface()

        self.queue = DurableMutationQueue(queue_database)
        self.gateway = InterceptionGateway.from_settings(settings, cache, fetcher)
        self.replay = ReplayCoordinator(
            self.queue,
            fetcher,
            sync_tag=settings.sync_tag,
            stuck_record_threshold=settings.stuck_record_threshold,
        )
        self.refresher = PeriodicRefresher(
            cache,
            fetcher,
            settings.refresh_paths,
            tag=settings.periodic_sync_tag,
            origin=settings.origin,
        )
        self.notifications = NotificationDispatcher.from_settings(settings, self.surface, self.clients)
        self.lifecycle = LifecycleController.from_settings(settings, cache, fetcher, self.clients)

        self._handlers: Dict[EventKind, Callable[[Any], Awaitable[Any]]] = {
            EventKind.INSTALL: self._on_install,
            EventKind.ACTIVATE: self._on_activate,
            EventKind.FETCH: self._on_fetch,
            EventKind.SYNC: self._on_sync,
            EventKind.PERIODIC_SYNC: self._on_periodic_sync,
            EventKind.PUSH: self._on_push,
            EventKind.NOTIFICATION_CLICK: self._on_notification_click,
            EventKind.MESSAGE: self.handle_message,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Optional[OfflineSettings] = None,
        fetcher: Optional[Fetcher] = None,
        storage: Optional[CacheStorage] = None,
        clients: Optional[ClientRegistry] = None,
        surface: Optional[NotificationSurface] = None,
    ) -> 'OfflineRuntime':
        settings = settings or get_offline_settings()
        cache = CacheTierManager(storage or create_cache_storage(settings), settings.version)
        fetcher = fetcher or AiohttpFetcher(settings.origin, timeout=settings.fetch_timeout_seconds)
        queue_database = QueueDatabase(settings.queue_database_url, echo=settings.queue_db_echo)
        return cls(settings, cache, fetcher, queue_database, clients=clients, surface=surface)

    async def start(self, run_refresher: bool = False) -> None:
        """Open the queue store and, optionally, the built-in refresh loop."""
        await self.queue_database.initialize()
        if run_refresher:
            await self.refresher.start(self.settings.refresh_interval_seconds)
        logger.info("Offline runtime started", version=self.settings.version)

    async def close(self) -> None:
        await self.refresher.stop()
        await self.gateway.wait_for_background()
        await self.fetcher.close()
        await self.cache.storage.close()
        await self.queue_database.close()
        logger.info("Offline runtime stopped")

    async def dispatch(self, kind: Union[EventKind, str], payload: Any = None) -> Any:
        """Route one event to its handler."""
        try:
            kind = EventKind(kind)
        except ValueError:
            logger.warning("Unsupported event kind", kind=kind)
            raise UnsupportedEvent(f"No handler for event kind {kind!r}")

        handler = self._handlers.get(kind)
        if handler is None:
            raise UnsupportedEvent(f"No handler for event kind {kind.value!r}")

        with EventContext(kind.value):
            logger.debug("Dispatching event", kind=kind.value)
            return await handler(payload)

    async def _on_install(self, _payload: Any = None) -> int:
        return await self.lifecycle.install()

    async def _on_activate(self, _payload: Any = None):
        return await self.lifecycle.activate()

    async def _on_fetch(self, request: Request):
        return await self.gateway.handle(request)

    async def _on_sync(self, tag: str):
        return await self.replay.handle_sync(tag)

    async def _on_periodic_sync(self, tag: str) -> bool:
        return await self.refresher.handle_periodic_sync(tag)

    async def _on_push(self, payload: Any):
        return await self.notifications.render(payload)

    async def _on_notification_click(self, click: Union[NotificationClick, Dict[str, Any], None]):
        if click is None:
            click = NotificationClick()
        elif not isinstance(click, NotificationClick):
            click = NotificationClick.model_validate(click)
        return await self.notifications.on_interaction(click.action, click.tag)

    async def handle_message(self, message: Union[CommandMessage, Dict[str, Any]]) -> Optional[CommandResult]:
        """
        Handle a command channel message.

        FORCE_ACTIVATE skips waiting and activates an installed version now.
        WARM_URLS warms the dynamic generation all-or-nothing. Unknown messages
        are logged and ignored.
        """
        if not isinstance(message, CommandMessage):
            try:
                message = CommandMessage.from_raw(message or {})
            except (ValidationError, TypeError, ValueError) as e:
                logger.warning("Ignoring unknown command message", raw_message=message, error=str(e))
                return None

        if message.type == CommandType.FORCE_ACTIVATE:
            self.lifecycle.skip_waiting()
            if self.lifecycle.state == LifecycleState.INSTALLED:
                await self.lifecycle.activate()
                return CommandResult(type=message.type, accepted=True, detail="activated")
            return CommandResult(type=message.type, accepted=True,
                                 detail=f"skip waiting set in state {self.lifecycle.state.value}")

        try:
            warmed = await warm_all(self.cache, self.fetcher, CacheTier.DYNAMIC,
                                    message.paths, self.settings.origin)
        except WarmingFailed as e:
            logger.error("Failed to warm requested URLs", path=e.path, reason=e.reason,
                         requested=len(message.paths))
            return CommandResult(type=message.type, accepted=False, detail=str(e))
        return CommandResult(type=message.type, accepted=True, detail=f"warmed {warmed}")

    async def status(self) -> RuntimeStatus:
        """Snapshot of lifecycle, generations and queue for diagnostics."""
        queue_healthy = await self.queue_database.health_check()
        queued = None
        if queue_healthy:
            try:
                queued = await self.queue.count()
            except StorageUnavailable:
                queue_healthy = False

        return RuntimeStatus(
            version=self.settings.version,
            lifecycle_state=self.lifecycle.state,
            waiting=self.lifecycle.is_waiting,
            generations=sorted(await self.cache.list_generation_names()),
            queued_mutations=queued,
            queue_healthy=queue_healthy,
            replay_stats=self.replay.stats.to_dict(),
            refresh_stats=self.refresher.get_stats(),
            gateway_stats=self.gateway.get_stats(),
            cache_stats=self.cache.get_stats(),
            cache_entries=await self.cache.entry_counts(),
            timestamp=datetime.now(timezone.utc),
        )
