from .did_cache_job import DidCacheWarmerHandler

__all__ = ["DidCacheWarmerHandler"]
