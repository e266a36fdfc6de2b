"""
Response caching for the proxy.
"""

from .response_cache import CacheEntry, ResponseCache, is_detail_path, ttl_for_path

__all__ = ["CacheEntry", "ResponseCache", "is_detail_path", "ttl_for_path"]
