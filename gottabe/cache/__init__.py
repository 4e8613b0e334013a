"""本地包缓存"""

from gottabe.cache.manager import PackageCacheManager

__all__ = ["PackageCacheManager"]
