from .models import DidCacheEntry, ResolvedIdentity

__all__ = ["DidCacheEntry", "ResolvedIdentity"]
