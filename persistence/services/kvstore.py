"""
Raw key-value store adapter.

The store is a Django cache alias holding plain strings with no expiry. A
cache cannot enumerate its keys, so the adapter reports usage over a known
namespace (every table key plus any other key written through it).
"""
from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from django.core.cache import caches
from django.core.cache.backends.base import BaseCache

from ..exceptions import QuotaExceeded, StorageUnavailable

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("quota", "oom", "maxmemory", "out of memory")


def byte_size(text: Optional[str]) -> int:
    return len(text.encode("utf-8")) if text else 0


class CacheKeyValueStore:
    """String key-value store over a Django cache.

    ``quota_bytes`` is a hard limit: a write that would push the namespace
    above it raises :class:`QuotaExceeded` and leaves the old value in place.
    Backend errors are mapped to :class:`QuotaExceeded` when they look like
    an out-of-memory refusal, otherwise to :class:`StorageUnavailable`.
    """

    def __init__(self, cache: BaseCache, namespace: Iterable[str] = (), quota_bytes: Optional[int] = None) -> None:
        self.cache = cache
        self.quota_bytes = quota_bytes
        self._namespace: dict[str, None] = dict.fromkeys(namespace)

    @classmethod
    def from_alias(cls, alias: str, namespace: Iterable[str] = (), quota_bytes: Optional[int] = None) -> "CacheKeyValueStore":
        return cls(caches[alias], namespace=namespace, quota_bytes=quota_bytes)

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self.cache.get(key)
        except Exception as exc:
            raise StorageUnavailable(f"read failed for {key}: {exc}") from exc

    def ensure_capacity(self, changes: Mapping[str, Optional[str]]) -> None:
        """Raise :class:`QuotaExceeded` if applying ``changes`` would break the quota.

        ``changes`` maps keys to their new raw value, ``None`` meaning removal.
        """
        if self.quota_bytes is None:
            return
        projected = sum(byte_size(k) + byte_size(v) for k, v in self.items().items() if k not in changes)
        projected += sum(byte_size(k) + byte_size(v) for k, v in changes.items() if v is not None)
        if projected > self.quota_bytes:
            raise QuotaExceeded(f"writing {', '.join(changes)} needs {projected} bytes, quota is {self.quota_bytes}")

    def set_item(self, key: str, value: str) -> None:
        self.ensure_capacity({key: value})
        try:
            self.cache.set(key, value, timeout=None)
        except Exception as exc:
            if any(marker in str(exc).lower() for marker in _QUOTA_MARKERS):
                raise QuotaExceeded(f"store refused {key}: {exc}") from exc
            raise StorageUnavailable(f"write failed for {key}: {exc}") from exc
        self._namespace.setdefault(key, None)

    def remove_item(self, key: str) -> None:
        try:
            self.cache.delete(key)
        except Exception as exc:
            raise StorageUnavailable(f"delete failed for {key}: {exc}") from exc

    def items(self) -> dict[str, str]:
        """Present keys of the namespace with their raw values."""
        try:
            found = self.cache.get_many(list(self._namespace))
        except Exception as exc:
            raise StorageUnavailable(f"bulk read failed: {exc}") from exc
        return {k: v for k, v in found.items() if v is not None}

    def probe(self, sentinel: str = "__storage_test__") -> bool:
        """Write and remove a sentinel key."""
        try:
            self.cache.set(sentinel, sentinel, timeout=None)
            ok = self.cache.get(sentinel) == sentinel
            self.cache.delete(sentinel)
        except Exception:
            logger.exception("local store is not available")
            return False
        if not ok:
            logger.error("local store is not available: sentinel read back mismatch")
        return ok
