"""Remote module retrieval."""

from .fetcher import CachedResponse, ExponentialBackoff, RemoteFetcher, split_integrity

__all__ = ["CachedResponse", "ExponentialBackoff", "RemoteFetcher", "split_integrity"]
