"""Snapshot persistence adapters.

`SnapshotStore` is the async interface; `MemorySnapshotStore` and
`MongoSnapshotStore` implement it. Use `create_store` to pick one from
Settings and `load_dataset` to rebuild the in-memory Dataset from a store.
"""

from pagestats_pipeline.storage.base import SnapshotStore, create_store, load_dataset
from pagestats_pipeline.storage.memory import MemorySnapshotStore

__all__ = ["SnapshotStore", "MemorySnapshotStore", "create_store", "load_dataset"]
