"""
Notifications - Host collaborators

Open application instances and the notification surface are owned by the
host. The offline layer reaches them through these interfaces; the in-memory
implementations serve single-process hosts and tests.
"""
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from ..shared.schemas import RenderedNotification

logger = structlog.get_logger(__name__)


@dataclass
class AppClient:
    """An open instance of the host application."""
    id: str
    url: str
    focused: bool = False
    controller_version: Optional[str] = None


class ClientRegistry(ABC):
    """Access to the host's open application instances."""

    @abstractmethod
    async def match_all(self) -> List[AppClient]:
        """All open instances, in the order they were opened."""

    @abstractmethod
    async def open_window(self, url: str) -> AppClient:
        """Open a new instance at `url`."""

    @abstractmethod
    async def focus(self, client: AppClient) -> AppClient:
        """Bring an instance to the foreground."""

    @abstractmethod
    async def claim(self, version: str) -> int:
        """Make every open instance use `version`; returns how many were claimed."""


class InMemoryClientRegistry(ClientRegistry):
    """Client registry held in process memory."""

    def __init__(self):
        self.clients: List[AppClient] = []
        self._ids = itertools.count(1)

    def register(self, url: str, controller_version: Optional[str] = None) -> AppClient:
        """Record an instance opened by the host itself."""
        client = AppClient(id=f"client-{next(self._ids)}", url=url, controller_version=controller_version)
        self.clients.append(client)
        return client

    async def match_all(self) -> List[AppClient]:
        return list(self.clients)

    async def open_window(self, url: str) -> AppClient:
        client = self.register(url)
        await self.focus(client)
        logger.info("Opened application window", client_id=client.id, url=url)
        return client

    async def focus(self, client: AppClient) -> AppClient:
        for other in self.clients:
            other.focused = other is client
        return client

    async def claim(self, version: str) -> int:
        for client in self.clients:
            client.controller_version = version
        return len(self.clients)


class NotificationSurface(ABC):
    """Where rendered notifications are displayed."""

    @abstractmethod
    async def show(self, notification: RenderedNotification) -> None:
        """Display a notification."""

    @abstractmethod
    async def close(self, tag: Optional[str]) -> None:
        """Dismiss a displayed notification."""


class InMemoryNotificationSurface(NotificationSurface):
    """Keeps displayed notifications in memory."""

    def __init__(self):
        self.displayed: Dict[str, RenderedNotification] = {}
        self.history: List[RenderedNotification] = []

    async def show(self, notification: RenderedNotification) -> None:
        self.displayed[notification.tag] = notification
        self.history.append(notification)

    async def close(self, tag: Optional[str]) -> None:
        self.displayed.pop(tag, None)
