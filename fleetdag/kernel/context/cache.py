"""Scoped, typed caches shared between planners and steps.

Caches exist at run, pipeline, module and task scope. Reads fall through to
the parent scope, writes stay local. Keys are ``CacheKey`` objects that carry
the value type, so a flag written by one task and read by another cannot
drift apart through string formatting.

Caches carry data only. Ordering between the writer and the reader must
still be expressed as graph edges.

Examples
--------
Module-level key shared by a step and a later task's ``is_required`` gate::

    CA_RENEWAL_REQUIRED = CacheKey("ca_renewal_required", bool)

    ctx.module_cache.set(CA_RENEWAL_REQUIRED, True)   # in a check step
    if ctx.module_cache.get(CA_RENEWAL_REQUIRED):      # in a later task
        ...
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar, get_origin

from fleetdag.kernel.exceptions import ResourceNotFoundError, TypeMismatchError

T = TypeVar("T")


class CacheScope(StrEnum):
    """Lifetime of a cache."""

    RUN = "run"
    PIPELINE = "pipeline"
    MODULE = "module"
    TASK = "task"


@dataclass(frozen=True)
class CacheKey(Generic[T]):
    """Typed cache key.

    Examples
    --------
    >>> ETCD_VERSION = CacheKey("etcd_version", str)
    >>> ETCD_VERSION.name
    'etcd_version'
    """

    name: str
    value_type: type[T]

    def check(self, value: object) -> None:
        expected = get_origin(self.value_type) or self.value_type
        if not isinstance(value, expected):
            raise TypeMismatchError(f"cache key '{self.name}'", self.value_type, type(value))


class ScopedCache:
    """Thread-safe key/value store with parent fall-through.

    Step code may run in worker threads (``FunctionStep`` with a blocking
    callable), so every access takes the lock.
    """

    __slots__ = ("scope", "name", "parent", "_store", "_children", "_lock")

    def __init__(self, scope: CacheScope, name: str, parent: ScopedCache | None = None) -> None:
        self.scope = scope
        self.name = name
        self.parent = parent
        self._store: dict[CacheKey[Any], Any] = {}
        self._children: dict[tuple[CacheScope, str], ScopedCache] = {}
        self._lock = threading.RLock()

    def get(self, key: CacheKey[T], default: T | None = None) -> T | None:
        """Return the value for ``key`` here or in the nearest ancestor."""
        with self._lock:
            if key in self._store:
                return self._store[key]
        if self.parent is not None:
            return self.parent.get(key, default)
        return default

    def require(self, key: CacheKey[T]) -> T:
        """Like ``get`` but raise when the key is set nowhere in the chain.

        Raises
        ------
        ResourceNotFoundError
            If no scope in the chain holds ``key``.
        """
        cache: ScopedCache | None = self
        while cache is not None:
            with cache._lock:
                if key in cache._store:
                    return cache._store[key]
            cache = cache.parent
        raise ResourceNotFoundError("cache key", key.name, self.keys())

    def set(self, key: CacheKey[T], value: T) -> None:
        """Store ``value`` in this scope.

        Raises
        ------
        TypeMismatchError
            If ``value`` is not an instance of the key's declared type.
        """
        key.check(value)
        with self._lock:
            self._store[key] = value

    def set_default(self, key: CacheKey[T], value: T) -> T:
        """Store ``value`` unless the key is already set locally; return the stored value."""
        key.check(value)
        with self._lock:
            return self._store.setdefault(key, value)

    def delete(self, key: CacheKey[Any]) -> bool:
        """Remove ``key`` from this scope only. Returns whether it was present."""
        with self._lock:
            return self._store.pop(key, _MISSING) is not _MISSING

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(k.name for k in self._store)

    def child(self, scope: CacheScope, name: str) -> ScopedCache:
        """Return the child cache for ``(scope, name)``, creating it once."""
        with self._lock:
            try:
                return self._children[(scope, name)]
            except KeyError:
                cache = ScopedCache(scope, name, parent=self)
                self._children[(scope, name)] = cache
                return cache

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._children.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            if key in self._store:
                return True
        return self.parent is not None and key in self.parent

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __repr__(self) -> str:
        return f"ScopedCache(scope={self.scope.value!r}, name={self.name!r}, keys={self.keys()})"


_MISSING = object()
