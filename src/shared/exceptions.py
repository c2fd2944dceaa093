"""
Shared Exceptions - Error taxonomy for the offline layer.

Cache misses are not errors: lookups return None.
"""
from typing import Optional


class OfflineEdgeError(Exception):
    """Base exception for the offline caching and sync layer."""
    pass


class NetworkUnavailable(OfflineEdgeError):
    """A fetch attempt failed or the network is absent."""

    def __init__(self, url: str, reason: Optional[str] = None):
        self.url = url
        self.reason = reason
        message = f"Network unavailable for {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StorageUnavailable(OfflineEdgeError):
    """The persistent cache or queue store cannot be opened."""
    pass


class ReplayFailure(OfflineEdgeError):
    """A single queued mutation could not be replayed."""

    def __init__(self, record_id: int, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Replay of queued mutation {record_id} failed: {reason}")


class InstallationFailed(OfflineEdgeError):
    """The static manifest could not be cached in full."""
    pass


class LifecycleError(OfflineEdgeError):
    """A lifecycle transition was requested out of order."""
    pass


class UnsupportedEvent(OfflineEdgeError):
    """The runtime has no handler for an event kind."""
    pass
