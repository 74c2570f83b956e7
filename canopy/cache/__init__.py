"""Memoization cache: keys, dependency graphs and the single-flight store."""

from .keys import CacheKey, canonicalize
from .graph import ProducerGraph, WaitGraph, topological_sort
from .store import CacheEntry, CacheStore, ComputeScope, Producer

__all__ = [
    "CacheKey",
    "canonicalize",
    "ProducerGraph",
    "WaitGraph",
    "topological_sort",
    "CacheEntry",
    "CacheStore",
    "ComputeScope",
    "Producer",
]
