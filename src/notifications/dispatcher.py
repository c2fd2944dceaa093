"""
Notifications - Push dispatcher

Renders inbound push payloads over localized defaults and routes user
interaction back into the host application, focusing an existing instance
rather than opening a duplicate.
"""
import itertools
import time
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

import structlog

from ..shared.config import OfflineSettings
from ..shared.schemas import NotificationAction, NotificationPayload, RenderedNotification
from ..transport.http_client import normalize_url
from .clients import AppClient, ClientRegistry, NotificationSurface

logger = structlog.get_logger(__name__)

LOCALIZED_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "en": {
        "title": "Offline Edge",
        "body": "You have a new notification",
        "actions": [
            {"action": "explore", "title": "View details", "icon": "/icons/action-explore.png"},
            {"action": "close", "title": "Close", "icon": "/icons/action-close.png"},
        ],
    },
    "ar": {
        "title": "إشعار جديد",
        "body": "لديك إشعار جديد",
        "actions": [
            {"action": "explore", "title": "عرض التفاصيل", "icon": "/icons/action-explore.png"},
            {"action": "close", "title": "إغلاق", "icon": "/icons/action-close.png"},
        ],
    },
}

DEFAULT_VIBRATE = [200, 100, 200]


class InteractionOutcome(str, Enum):
    """What a notification interaction did."""
    FOCUSED = "focused"
    OPENED = "opened"
    DISMISSED = "dismissed"


class NotificationDispatcher:
    """Displays push notifications and routes clicks to application instances."""

    def __init__(
        self,
        surface: NotificationSurface,
        clients: ClientRegistry,
        origin: str,
        locale: str = "en",
        icon: str = "/icons/icon-192x192.png",
        badge: Optional[str] = "/icons/badge-72x72.png",
        routes: Optional[Mapping[str, str]] = None,
        dismiss_actions: Iterable[str] = ("close", "dismiss"),
        root_url: str = "/",
    ):
        self.surface = surface
        self.clients = clients
        self.origin = origin
        self.locale = locale if locale in LOCALIZED_DEFAULTS else "en"
        self.icon = icon
        self.badge = badge
        self.routes = dict(routes or {"explore": "/dashboard"})
        self.dismiss_actions = set(dismiss_actions)
        self.root_url = root_url

        self._keys = itertools.count(1)
        self.stats = {
            'rendered': 0,
            'focused': 0,
            'opened': 0,
            'dismissed': 0,
        }

    @classmethod
    def from_settings(cls, settings: OfflineSettings, surface: NotificationSurface,
                      clients: ClientRegistry) -> 'NotificationDispatcher':
        return cls(
            surface,
            clients,
            origin=settings.origin,
            locale=settings.notification_locale,
            icon=settings.notification_icon,
            badge=settings.notification_badge,
            routes=settings.notification_routes,
            dismiss_actions=settings.notification_dismiss_actions,
        )

    def defaults(self) -> Dict[str, Any]:
        localized = LOCALIZED_DEFAULTS[self.locale]
        return {
            "title": localized["title"],
            "body": localized["body"],
            "icon": self.icon,
            "actions": [NotificationAction(**action) for action in localized["actions"]],
        }

    async def render(self, payload: Union[NotificationPayload, Dict[str, Any], None] = None) -> RenderedNotification:
        """Merge the payload over the localized defaults and display it."""
        if payload is None:
            payload = NotificationPayload()
        elif not isinstance(payload, NotificationPayload):
            payload = NotificationPayload.model_validate(payload)

        defaults = self.defaults()
        data = {
            "date_of_arrival": int(time.time() * 1000),
            "primary_key": next(self._keys),
        }
        data.update(payload.metadata or {})

        notification = RenderedNotification(
            title=payload.title or defaults["title"],
            body=payload.body or defaults["body"],
            icon=payload.icon or defaults["icon"],
            badge=self.badge,
            vibrate=list(DEFAULT_VIBRATE),
            require_interaction=True,
            actions=payload.actions if payload.actions is not None else defaults["actions"],
            data=data,
            tag=str(uuid.uuid4()),
        )

        await self.surface.show(notification)
        self.stats['rendered'] += 1
        logger.info("Displayed push notification", tag=notification.tag, title=notification.title)
        return notification

    async def on_interaction(self, action: Optional[str] = None, tag: Optional[str] = None) -> InteractionOutcome:
        """
        Route a notification click.

        Routed actions open or focus their view, dismiss actions only close the
        notification, and a plain tap focuses any instance on the application
        origin, preferring one at the root, or opens the root.
        """
        await self.surface.close(tag)
        logger.info("Notification clicked", action=action, tag=tag)

        if action and action in self.dismiss_actions:
            self.stats['dismissed'] += 1
            return InteractionOutcome.DISMISSED

        if action and action in self.routes:
            return await self._focus_or_open(self.routes[action])
        return await self._focus_or_open(self.root_url, same_origin=True)

    async def _focus_or_open(self, path: str, same_origin: bool = False) -> InteractionOutcome:
        target = normalize_url(path, self.origin)
        clients = await self.clients.match_all()
        matching: List[AppClient] = [
            client for client in clients
            if normalize_url(client.url, self.origin) == target
        ]
        if not matching and same_origin:
            matching = [
                client for client in clients
                if _origin_of(client.url, self.origin) == _origin_of(target)
            ]

        if matching:
            await self.clients.focus(matching[0])
            self.stats['focused'] += 1
            return InteractionOutcome.FOCUSED

        await self.clients.open_window(target)
        self.stats['opened'] += 1
        return InteractionOutcome.OPENED


def _origin_of(url: str, origin: Optional[str] = None) -> Tuple[str, str]:
    parts = urlsplit(normalize_url(url, origin))
    return parts.scheme, parts.netloc
