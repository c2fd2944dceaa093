"""
Tiered cache generations for Offline Edge.

This package provides:
- Versioned static, dynamic and api generations over a pluggable storage backend
- Generation eviction by set difference on activation
- All-or-nothing and best-effort warming
- Periodic background refresh of API resources
"""

from .cache_manager import (
    CacheTier,
    Fingerprint,
    CachedResponse,
    CacheStorage,
    MemoryCacheStorage,
    RedisCacheStorage,
    CacheGenerationHandle,
    CacheTierManager,
    create_cache_storage,
)

from .cache_warming import (
    settle_all,
    warm_all,
    prewarm,
    WarmingFailed,
    PeriodicRefresher,
)

__all__ = [
    # Core classes
    'CacheTier',
    'Fingerprint',
    'CachedResponse',
    'CacheStorage',
    'MemoryCacheStorage',
    'RedisCacheStorage',
    'CacheGenerationHandle',
    'CacheTierManager',

    # Warming
    'settle_all',
    'warm_all',
    'prewarm',
    'WarmingFailed',
    'PeriodicRefresher',

    # Factory functions
    'create_cache_storage',
]
