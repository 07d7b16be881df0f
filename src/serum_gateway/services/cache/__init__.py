"""In-memory caches."""

from serum_gateway.services.cache.keyed import KeyedTtlCache
from serum_gateway.services.cache.reference import BlockReferenceCache

__all__ = ["BlockReferenceCache", "KeyedTtlCache"]
