"""
Cache — Local on-disk state shared by pull and push.
"""

from .directory import CACHE_REFERENCE_PREFIX, CacheDirectory

__all__ = ["CACHE_REFERENCE_PREFIX", "CacheDirectory"]
