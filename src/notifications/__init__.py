"""
Notifications - push rendering and interaction routing.
"""

from .clients import (
    AppClient,
    ClientRegistry,
    InMemoryClientRegistry,
    NotificationSurface,
    InMemoryNotificationSurface,
)
from .dispatcher import NotificationDispatcher, InteractionOutcome, LOCALIZED_DEFAULTS

__all__ = [
    'AppClient',
    'ClientRegistry',
    'InMemoryClientRegistry',
    'NotificationSurface',
    'InMemoryNotificationSurface',
    'NotificationDispatcher',
    'InteractionOutcome',
    'LOCALIZED_DEFAULTS',
]
