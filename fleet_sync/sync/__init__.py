"""
Read and write paths of the synchronization layer.

Modules:
- dedup: primary-key deduplication of fetched rows
- fetcher: stateless backend reads
- optimistic: local cache updates ahead of backend confirmation
- context: application-root owner of the whole layer
"""

from .dedup import deduplicate, has_duplicates
from .fetcher import Fetcher, QueryBackend

__all__ = [
    "deduplicate",
    "has_duplicates",
    "Fetcher",
    "QueryBackend",
]
