# Storage = where durable turn state lives between turns.

# The orchestration core only needs three operations:

# read(keys) -> items that exist

# write(changes) -> upsert

# delete(keys)

# Anything else (databases, blob stores, caches) plugs in behind the same shape.

from .memory_storage import MemoryStorage, Storage

__all__ = ["MemoryStorage", "Storage"]
