from typing import Dict, List, Any, Optional, Set, Tuple
from abc import ABC, abstractmethod
import copy

from convo_agent.domain.models.errors import ConvoAgentError, InvalidMemoryPathError

SCOPES = ("user", "conversation", "temp")

_MISSING = object()


def parse_memory_path(path: str) -> Tuple[str, List[str]]:
    """Split a dot path into its scope and the names below it.

    A path without a scope resolves to the ``temp`` scope.
    """

    if not path:
        raise InvalidMemoryPathError(path, "path is empty")

    parts = path.split(".")
    if any(not part for part in parts):
        raise InvalidMemoryPathError(path, "path contains an empty segment")

    if len(parts) == 1:
        return "temp", parts

    scope, names = parts[0], parts[1:]
    if scope not in SCOPES:
        raise InvalidMemoryPathError(path, f"unknown scope '{scope}'")

    return scope, names


def _lookup(values: Dict[str, Any], names: List[str]) -> Any:
    current: Any = values
    for name in names:
        if not isinstance(current, dict) or name not in current:
            return _MISSING
        current = current[name]
    return current


def _assign(values: Dict[str, Any], names: List[str], value: Any, path: str) -> None:
    current = values
    for name in names[:-1]:
        child = current.get(name)
        if child is None:
            child = {}
            current[name] = child
        elif not isinstance(child, dict):
            raise InvalidMemoryPathError(path, f"'{name}' is not a mapping")
        current = child
    current[names[-1]] = value


def _remove(values: Dict[str, Any], names: List[str]) -> None:
    parent = _lookup(values, names[:-1]) if len(names) > 1 else values
    if isinstance(parent, dict):
        parent.pop(names[-1], None)


class Memory(ABC):
    """Path addressable key/value memory"""

    @abstractmethod
    def get_value(self, path: str) -> Any:
        """Return the value at path or None"""

    @abstractmethod
    def set_value(self, path: str, value: Any) -> None:
        """Assign a value at path"""

    @abstractmethod
    def has_value(self, path: str) -> bool:
        """Check whether a value exists at path"""

    @abstractmethod
    def delete_value(self, path: str) -> None:
        """Remove the value at path if present"""


class ScopedMemory(Memory):
    """Memory held directly in per-scope dictionaries"""

    def __init__(self, scopes: Optional[Dict[str, Dict[str, Any]]] = None):
        self._scopes: Dict[str, Dict[str, Any]] = {scope: {} for scope in SCOPES}
        for scope, values in (scopes or {}).items():
            if scope not in SCOPES:
                raise InvalidMemoryPathError(scope, f"unknown scope '{scope}'")
            self._scopes[scope] = values if values is not None else {}

    def get_value(self, path: str) -> Any:
        scope, names = parse_memory_path(path)
        value = _lookup(self._scopes[scope], names)
        return None if value is _MISSING else value

    def set_value(self, path: str, value: Any) -> None:
        scope, names = parse_memory_path(path)
        _assign(self._scopes[scope], names, value, path)

    def has_value(self, path: str) -> bool:
        scope, names = parse_memory_path(path)
        return _lookup(self._scopes[scope], names) is not _MISSING

    def delete_value(self, path: str) -> None:
        scope, names = parse_memory_path(path)
        _remove(self._scopes[scope], names)


class MemoryFork(Memory):
    """Copy-on-write overlay over another memory.

    Reads fall through to the backing memory and return private copies, so
    mutating a value read from the fork never changes durable state. Writes
    and deletes stay in the overlay until ``merge_changes`` is called.
    """

    def __init__(self, memory: Memory):
        self._memory = memory
        self._fork: Dict[str, Dict[str, Any]] = {scope: {} for scope in SCOPES}
        self._deleted: Set[Tuple[str, str]] = set()
        self._merged = False

    def get_value(self, path: str) -> Any:
        scope, names = parse_memory_path(path)
        value = self._resolve(scope, names)
        return None if value is _MISSING else value

    def set_value(self, path: str, value: Any) -> None:
        scope, names = parse_memory_path(path)
        top = names[0]

        if len(names) == 1:
            self._fork[scope][top] = value
        else:
            self._materialize(scope, top)
            _assign(self._fork[scope], names, value, path)

        self._deleted.discard((scope, top))

    def has_value(self, path: str) -> bool:
        scope, names = parse_memory_path(path)
        return self._resolve(scope, names) is not _MISSING

    def delete_value(self, path: str) -> None:
        scope, names = parse_memory_path(path)
        top = names[0]

        if len(names) == 1:
            self._fork[scope].pop(top, None)
            self._deleted.add((scope, top))
        elif self._resolve(scope, names) is not _MISSING:
            self._materialize(scope, top)
            _remove(self._fork[scope], names)

    def merge_changes(self, target: Optional[Memory] = None) -> None:
        """Apply every overlay change to the target (the backing memory by default)"""

        if self._merged:
            raise ConvoAgentError("Memory fork has already been merged")

        target = target or self._memory
        for scope, name in self._deleted:
            target.delete_value(f"{scope}.{name}")

        for scope, values in self._fork.items():
            for name, value in values.items():
                target.set_value(f"{scope}.{name}", value)

        self._merged = True

    @property
    def changed_paths(self) -> List[str]:
        """Top-level paths written or deleted through this fork"""
        paths = [f"{scope}.{name}" for scope, values in self._fork.items() for name in values]
        paths.extend(f"{scope}.{name}" for scope, name in self._deleted)
        return sorted(set(paths))

    def _resolve(self, scope: str, names: List[str]) -> Any:
        top = names[0]
        if top in self._fork[scope]:
            return _lookup(self._fork[scope], names)
        if (scope, top) in self._deleted:
            return _MISSING

        path = f"{scope}.{top}"
        if not self._memory.has_value(path):
            return _MISSING

        value = {top: copy.deepcopy(self._memory.get_value(path))}
        return _lookup(value, names)

    def _materialize(self, scope: str, top: str) -> None:
        if top in self._fork[scope]:
            return

        current = _MISSING
        if (scope, top) not in self._deleted:
            current = self._resolve(scope, [top])

        if current is _MISSING:
            current = {}
        elif not isinstance(current, dict):
            raise InvalidMemoryPathError(f"{scope}.{top}", f"'{top}' is not a mapping")

        self._fork[scope][top] = current
