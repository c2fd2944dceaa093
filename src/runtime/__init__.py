"""
Runtime - event dispatch and the HTTP control plane.
"""

from .events import EventKind, OfflineRuntime

__all__ = ['EventKind', 'OfflineRuntime']
