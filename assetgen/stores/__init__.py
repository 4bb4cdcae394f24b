"""Process-scoped stores for rendered assets."""

from .asset_cache import AssetCache, CacheStats

__all__ = ["AssetCache", "CacheStats"]
