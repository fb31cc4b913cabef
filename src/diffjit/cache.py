"""Fingerprint-keyed cache of compiled functions."""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future

from .backend import CompiledFunction, JitBackend
from .errors import CompileError

logger = logging.getLogger(__name__)


def fingerprint(normalized_expression: str, variable: str, tag: str) -> str:
    """Stable key over canonical expression text, variable and mode tag."""
    digest = hashlib.blake2b(digest_size=16)
    digest.update(normalized_expression.encode("utf-8"))
    digest.update(b"\x1f")
    digest.update(variable.encode("utf-8"))
    digest.update(b"\x1f")
    digest.update(tag.encode("utf-8"))
    return digest.hexdigest()


class FunctionCache:
    """At-most-one compilation per fingerprint.

    Concurrent requests for a fingerprint that is still compiling wait on the
    same future and observe the same result or the same CompileError. Failed
    compiles are not cached. `max_entries=None` keeps every entry; otherwise
    the least recently used entry is evicted past the bound.
    """

    def __init__(self, backend: JitBackend, *, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        self.backend = backend
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CompiledFunction] = OrderedDict()
        self._names: dict[str, str] = {}
        self._inflight: dict[str, Future] = {}
        self._stats: dict[str, int] = {"hits": 0, "misses": 0, "compiles": 0, "evictions": 0, "failures": 0}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def get(self, fingerprint: str) -> CompiledFunction | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None:
                self._entries.move_to_end(fingerprint)
                self._stats["hits"] += 1
            return entry

    def lookup(self, function_name: str) -> CompiledFunction | None:
        with self._lock:
            key = self._names.get(function_name)
            if key is None:
                return None
            self._entries.move_to_end(key)
            return self._entries[key]

    def get_or_compile(self, fingerprint: str, source: str, function_name: str) -> CompiledFunction:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None:
                self._entries.move_to_end(fingerprint)
                self._stats["hits"] += 1
                logger.debug("cache hit for %s", function_name)
                return entry
            future = self._inflight.get(fingerprint)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[fingerprint] = future
                self._stats["misses"] += 1
            else:
                self._stats["hits"] += 1

        if not owner:
            return future.result()

        try:
            compiled = self.backend.compile(source, function_name, fingerprint=fingerprint)
        except CompileError as err:
            with self._lock:
                self._inflight.pop(fingerprint, None)
                self._stats["failures"] += 1
            future.set_exception(err)
            raise
        except BaseException as err:
            with self._lock:
                self._inflight.pop(fingerprint, None)
            future.set_exception(err)
            raise

        with self._lock:
            self._inflight.pop(fingerprint, None)
            self._entries[fingerprint] = compiled
            self._names[function_name] = fingerprint
            self._stats["compiles"] += 1
            self._evict_locked()
        future.set_result(compiled)
        return compiled

    def _evict_locked(self) -> None:
        if self.max_entries is None:
            return
        while len(self._entries) > self.max_entries:
            key, evicted = self._entries.popitem(last=False)
            self._names.pop(evicted.function_name, None)
            self._stats["evictions"] += 1
            logger.warning("evicted %s (cache bound %d)", evicted.function_name, self.max_entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._names.clear()

    def stats(self, *, reset: bool = False) -> dict[str, float | int | None]:
        with self._lock:
            hits = self._stats["hits"]
            misses = self._stats["misses"]
            total = hits + misses
            stats: dict[str, float | int | None] = {
                **self._stats,
                "size": len(self._entries),
                "max_size": self.max_entries,
                "hit_rate": float(hits / total) if total else 0.0,
            }
            if reset:
                for key in self._stats:
                    self._stats[key] = 0
            return stats
