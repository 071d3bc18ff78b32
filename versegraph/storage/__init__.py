"""Storage interfaces and implementations for the verse graph."""

from versegraph.storage.interfaces import (
    EDGES_COLLECTION,
    NOTES_COLLECTION,
    LocalCacheInterface,
    RemoteGraphStoreInterface,
)
from versegraph.storage.json_cache import JsonFileLocalCache
from versegraph.storage.memory import InMemoryLocalCache, InMemoryRemoteGraphStore

__all__ = [
    "EDGES_COLLECTION",
    "NOTES_COLLECTION",
    "LocalCacheInterface",
    "RemoteGraphStoreInterface",
    "InMemoryLocalCache",
    "InMemoryRemoteGraphStore",
    "JsonFileLocalCache",
]
