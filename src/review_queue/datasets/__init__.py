"""Durable storage and the content-addressable dataset cache."""

from .cache import DatasetCache
from .store import DuckDBKeyValueStore, KeyValueStore

__all__ = ["DatasetCache", "DuckDBKeyValueStore", "KeyValueStore"]
