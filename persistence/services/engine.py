"""
Storage engine.

Emulates a small relational database on top of a string key-value store:
every table is one JSON array under one key. Reads degrade to a fallback
value instead of raising; writes raise typed errors from
:mod:`persistence.exceptions`.

A write either replaces a table's serialized value completely or leaves the
previous value untouched::

    Idle -> Writing -> Committed
                    -> QuotaFailure -> PressureRelief -> Retry -> Committed | Failed

Multi-step sequences (read-modify-write, backup then metadata update) are
not atomic across calls; callers rely on single-threaded execution.
"""
from __future__ import annotations

import json
import logging
import random
import re
import string
import time
from datetime import timedelta, timezone as dt_timezone
from typing import Any, Callable, Mapping, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from ..conf import StoreSettings
from ..exceptions import (
    DataCorrupted,
    DuplicateRecord,
    NotFound,
    ParseError,
    QuotaExceeded,
    StorageError,
    StorageUnavailable,
)
from .keys import KeyMap
from .kvstore import CacheKeyValueStore, byte_size
from .scheduling import ScheduledTask

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"

_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_ID_ALPHABET = string.digits + string.ascii_lowercase

Predicate = Mapping[str, Any]


def now_iso() -> str:
    return timezone.now().isoformat()


def generate_id() -> str:
    """Millisecond timestamp plus a random base36 suffix."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


def repair_json(text: str) -> str:
    """Strip trailing commas before a closing brace or bracket."""
    return _TRAILING_COMMA.sub(r"\1", text)


def matches(record: Mapping[str, Any], predicate: Optional[Predicate]) -> bool:
    """Exact match per field, or a callable matcher receiving the field value."""
    if not predicate:
        return True
    for field, expected in predicate.items():
        value = record.get(field)
        if callable(expected):
            if not expected(value):
                return False
        elif value != expected:
            return False
    return True


def _parse_timestamp(value: Any):
    if not isinstance(value, str):
        return None
    parsed = parse_datetime(value)
    if parsed is not None and timezone.is_naive(parsed):
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


class StorageEngine:
    def __init__(
        self,
        store: CacheKeyValueStore,
        *,
        keys: Optional[KeyMap] = None,
        settings: Optional[StoreSettings] = None,
        scheduler=None,
        clock: Callable[[], float] = time.time,
        auto_backup: bool = True,
    ) -> None:
        self.store = store
        self.settings = settings or StoreSettings()
        self.keys = keys or KeyMap(self.settings.key_prefix)
        self.scheduler = scheduler
        self.clock = clock
        self._last_backup_at: Optional[float] = None
        self._relieving = False
        self._timers: list[ScheduledTask] = []
        self.available = self.store.probe()
        if scheduler is not None and auto_backup:
            self.start_auto_backup()

    def is_available(self) -> bool:
        return self.available

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------
    def get_usage(self) -> dict[str, int]:
        total = self.settings.capacity_bytes
        if not self.available:
            return {"used": 0, "total": 0, "available": 0, "percentage": 0}
        try:
            items = self.store.items()
        except StorageError:
            logger.exception("could not compute storage usage")
            return {"used": 0, "total": 0, "available": 0, "percentage": 0}
        used = sum(byte_size(k) + byte_size(v) for k, v in items.items())
        return {
            "used": used,
            "total": total,
            "available": total - used,
            "percentage": round(used / total * 100) if total else 0,
        }

    def is_near_limit(self) -> bool:
        return self.get_usage()["percentage"] > self.settings.near_limit_percent

    # ------------------------------------------------------------------
    # Typed get / set
    # ------------------------------------------------------------------
    def parse(self, raw: Optional[str], fallback: Any = None) -> Any:
        """Parse ``raw`` with one repair pass; never raises."""
        if not raw:
            return fallback
        try:
            value = self._parse_strict(raw)
        except ParseError as exc:
            logger.error("%s; using fallback", exc)
            return fallback
        if value is None:
            logger.warning("parsed value is null; using fallback")
            return fallback
        return value

    def _parse_strict(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("JSON parse error (%s); attempting repair", exc)
        try:
            return json.loads(repair_json(raw))
        except json.JSONDecodeError as exc:
            raise ParseError(f"data recovery failed: {exc}") from exc

    def get(self, table: str, fallback: Any = None) -> Any:
        if not self.available:
            logger.warning("storage not available, using fallback for %s", table)
            return fallback
        key = self.keys.resolve(table)
        try:
            raw = self.store.get_item(key)
        except StorageError:
            logger.exception("error reading %s", key)
            return fallback
        return self.parse(raw, fallback)

    def set(self, table: str, value: Any) -> bool:
        if not self.available:
            raise StorageUnavailable("local store is not available")
        key = self.keys.resolve(table)
        if self.is_near_limit():
            logger.warning("storage near limit, attempting cleanup before writing %s", key)
            self.relieve_pressure()
        payload = json.dumps(value, ensure_ascii=False)
        try:
            self.store.set_item(key, payload)
        except QuotaExceeded as exc:
            logger.warning("quota exceeded writing %s (%s); relieving pressure and retrying once", key, exc)
            self.relieve_pressure()
            try:
                self.store.set_item(key, payload)
            except QuotaExceeded as retry_exc:
                logger.error("write of %s failed after cleanup", key)
                raise QuotaExceeded(f"write rejected for {key} after pressure relief") from retry_exc
            logger.info("write of %s succeeded after cleanup", key)
        self.throttled_backup()
        return True

    def _write_raw(self, key: str, value: Any) -> None:
        # no pressure check, no backup: used by relief, backup and metadata
        self.store.set_item(key, json.dumps(value, ensure_ascii=False))

    # ------------------------------------------------------------------
    # Pressure relief
    # ------------------------------------------------------------------
    def relieve_pressure(self) -> bool:
        """Prune low-value rows. Returns True when anything was removed."""
        if self._relieving or not self.available:
            return False
        self._relieving = True
        trimmed = False
        try:
            notifications = self.get("notifications", [])
            keep = self.settings.notification_retention
            if isinstance(notifications, list) and len(notifications) > keep:
                trimmed |= self._trim("notifications", notifications[-keep:])

            history = self.get("medical_history", [])
            keep = self.settings.history_retention
            if isinstance(history, list) and len(history) > keep:
                trimmed |= self._trim("medical_history", history[-keep:])

            estimates = self.get("estimates", [])
            if isinstance(estimates, list):
                cutoff = timezone.now() - timedelta(days=self.settings.paid_estimate_max_age_days)
                active = [e for e in estimates if not self._is_stale_paid_estimate(e, cutoff)]
                if len(active) < len(estimates):
                    trimmed |= self._trim("estimates", active)
        finally:
            self._relieving = False
        return trimmed

    def _trim(self, table: str, rows: list) -> bool:
        try:
            self._write_raw(self.keys.resolve(table), rows)
        except StorageError:
            logger.exception("cleanup of %s failed", table)
            return False
        logger.info("trimmed %s to %d rows", table, len(rows))
        return True

    @staticmethod
    def _is_stale_paid_estimate(estimate: Any, cutoff) -> bool:
        if not isinstance(estimate, Mapping) or estimate.get("status") != "paid":
            return False
        created = _parse_timestamp(estimate.get("createdAt"))
        # rows without a readable date are kept
        return created is not None and created < cutoff

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------
    def create_backup(self) -> Optional[dict[str, Any]]:
        """Snapshot every table into the backup key. Best effort."""
        if not self.available:
            return None
        try:
            snapshot: dict[str, Any] = {"timestamp": now_iso(), "version": SNAPSHOT_VERSION, "data": {}}
            for key in self.keys.table_keys():
                raw = self.store.get_item(key)
                if raw:
                    snapshot["data"][key] = raw
            self.store.set_item(self.keys.backup, json.dumps(snapshot, ensure_ascii=False))
        except QuotaExceeded:
            logger.exception("failed to create backup")
            self.relieve_pressure()
            return None
        except StorageError:
            logger.exception("failed to create backup")
            return None
        self._last_backup_at = self.clock()
        self.update_metadata(lastBackup=snapshot["timestamp"])
        logger.info("backup created at %s (%d tables)", snapshot["timestamp"], len(snapshot["data"]))
        return snapshot

    def throttled_backup(self) -> Optional[dict[str, Any]]:
        if self._last_backup_at is not None:
            if self.clock() - self._last_backup_at < self.settings.backup_throttle_seconds:
                return None
        self._last_backup_at = self.clock()
        return self.create_backup()

    def restore_from_backup(self) -> None:
        if not self.available:
            raise StorageUnavailable("local store is not available")
        raw = self.store.get_item(self.keys.backup)
        if not raw:
            raise NotFound("no backup available")
        snapshot = self._parse_strict(raw)
        if not isinstance(snapshot, dict) or not snapshot.get("timestamp") or not isinstance(snapshot.get("data"), dict):
            raise DataCorrupted("backup snapshot is missing data or timestamp")
        data = snapshot["data"]
        for key, value in data.items():
            if not isinstance(value, str):
                raise DataCorrupted(f"backup entry {key} is not a serialized table")
        changes = {key: data.get(key) for key in self.keys.table_keys()}
        changes.update(data)
        # nothing is written unless the whole snapshot fits
        self.store.ensure_capacity(changes)
        current = self.store.items()
        for key, value in changes.items():
            if value is None:
                self.store.remove_item(key)
        # shrinking writes first so no intermediate state exceeds the final size
        writes = sorted(
            ((k, v) for k, v in changes.items() if v is not None),
            key=lambda kv: byte_size(kv[1]) - byte_size(current.get(kv[0])),
        )
        for key, value in writes:
            self.store.set_item(key, value)
        self.update_metadata(lastRestore=snapshot["timestamp"])
        logger.info("data restored from backup %s", snapshot["timestamp"])

    def start_auto_backup(self) -> bool:
        """Initial backup shortly after start, then a periodic one."""
        if self.scheduler is None or self._timers:
            return False
        try:
            self._timers = [
                self.scheduler.call_later(self.settings.initial_backup_delay_seconds, self.create_backup),
                self.scheduler.call_every(self.settings.backup_interval_seconds, self.create_backup),
            ]
        except RuntimeError:
            logger.warning("auto backup not scheduled: no running event loop")
            return False
        return True

    def close(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    # ------------------------------------------------------------------
    # Metadata / maintenance
    # ------------------------------------------------------------------
    def get_metadata(self) -> dict[str, Any]:
        return self.get(self.keys.metadata, {})

    def update_metadata(self, **fields: Any) -> None:
        try:
            metadata = self.get_metadata()
            self._write_raw(self.keys.metadata, {**metadata, **fields, "lastUpdated": now_iso()})
        except StorageError:
            logger.exception("failed to update metadata")

    def clear_all(self) -> bool:
        """Remove every key except the backup, taking a final backup first."""
        if not self.available:
            return False
        self.create_backup()
        try:
            for key in self.keys.namespace():
                if key != self.keys.backup:
                    self.store.remove_item(key)
        except StorageError:
            logger.exception("failed to clear data")
            return False
        logger.info("all data cleared")
        return True

    # ------------------------------------------------------------------
    # Relational CRUD
    # ------------------------------------------------------------------
    def _rows(self, table: str, *, for_write: bool = False) -> list[dict[str, Any]]:
        data = self.get(table, [])
        if isinstance(data, list):
            return data
        if for_write:
            raise DataCorrupted(f"{table} does not hold an array; restore or import before writing")
        logger.error("data for %s is not an array; returning no rows", table)
        return []

    def select(self, table: str, predicate: Optional[Predicate] = None) -> list[dict[str, Any]]:
        return [row for row in self._rows(table) if isinstance(row, Mapping) and matches(row, predicate)]

    def insert(self, table: str, record: Mapping[str, Any]) -> dict[str, Any]:
        rows = self._rows(table, for_write=True)
        timestamp = now_iso()
        new_record = {
            **record,
            "id": record.get("id") or generate_id(),
            "createdAt": record.get("createdAt") or timestamp,
            "updatedAt": timestamp,
        }
        if any(isinstance(row, Mapping) and row.get("id") == new_record["id"] for row in rows):
            raise DuplicateRecord(f"record already exists: {new_record['id']}")
        rows.append(new_record)
        self.set(table, rows)
        return new_record

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        rows = self._rows(table, for_write=True)
        for index, row in enumerate(rows):
            if isinstance(row, Mapping) and row.get("id") == record_id:
                break
        else:
            raise NotFound(f"record not found: {record_id}")
        updated = {**row, **patch, "id": row["id"], "updatedAt": now_iso()}
        if "createdAt" in row:
            updated["createdAt"] = row["createdAt"]
        rows[index] = updated
        self.set(table, rows)
        return updated

    def delete(self, table: str, record_id: str) -> bool:
        rows = self._rows(table, for_write=True)
        remaining = [row for row in rows if not (isinstance(row, Mapping) and row.get("id") == record_id)]
        if len(remaining) == len(rows):
            raise NotFound(f"record not found: {record_id}")
        self.set(table, remaining)
        return True
