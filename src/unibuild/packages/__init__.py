"""Build directory and object cache management for unibuild."""

from .cache import Cache, CacheError, default_common_build_dir

__all__ = [
    "Cache",
    "CacheError",
    "default_common_build_dir",
]
