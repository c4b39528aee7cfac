"""
Durable read-through cache with stale fallback and request coalescing.
"""
from .core import CacheEntry, CacheSource, CacheStats
from .store import CacheStore
from .ttl_policies import (
    ReadPathClass,
    ttl_config,
    get_read_class,
    get_ttl_for_path,
)
from .coalescer import RequestCoalescer
from .orchestrator import FetchOrchestrator

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "CacheStats",
    # Store
    "CacheStore",
    # TTL policies
    "ReadPathClass",
    "ttl_config",
    "get_read_class",
    "get_ttl_for_path",
    # Coalescing
    "RequestCoalescer",
    # Orchestrator
    "FetchOrchestrator",
]
