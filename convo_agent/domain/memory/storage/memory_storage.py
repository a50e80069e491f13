from typing import Dict, Any, List, Protocol
import asyncio
import copy
import structlog

logger = structlog.get_logger(__name__)


class Storage(Protocol):
    """Durable backing store for turn state"""

    async def read(self, keys: List[str]) -> Dict[str, Any]:
        ...

    async def write(self, changes: Dict[str, Any]) -> None:
        ...

    async def delete(self, keys: List[str]) -> None:
        ...


class MemoryStorage:
    """In-process storage for development and tests"""

    def __init__(self):
        self.items: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def read(self, keys: List[str]) -> Dict[str, Any]:
        """Read the items that exist for the given keys"""

        async with self._lock:
            return {
                key: copy.deepcopy(self.items[key])
                for key in keys
                if key in self.items
            }

    async def write(self, changes: Dict[str, Any]) -> None:
        """Upsert the given items"""

        async with self._lock:
            for key, value in changes.items():
                self.items[key] = copy.deepcopy(value)

        logger.debug("Storage write", keys=list(changes.keys()))

    async def delete(self, keys: List[str]) -> None:
        """Delete the given keys if present"""

        async with self._lock:
            for key in keys:
                self.items.pop(key, None)
