"""
Store settings.

Values come from ``settings.LOCAL_STORE`` (see ``clinic/settings.py``);
anything missing falls back to :data:`DEFAULTS`.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Optional

from django.conf import settings

DEFAULTS: dict[str, Any] = {
    "CACHE_ALIAS": "localstore",
    "KEY_PREFIX": "extramed_",
    "CAPACITY_BYTES": 5 * 1024 * 1024,
    "QUOTA_BYTES": None,
    "NEAR_LIMIT_PERCENT": 80,
    "BACKUP_INTERVAL_SECONDS": 30 * 60,
    "INITIAL_BACKUP_DELAY_SECONDS": 5,
    "BACKUP_THROTTLE_SECONDS": 5 * 60,
    "SYNC_DEBOUNCE_SECONDS": 0.5,
    "NOTIFICATION_RETENTION": 50,
    "HISTORY_RETENTION": 100,
    "PAID_ESTIMATE_MAX_AGE_DAYS": 90,
}


@dataclass(frozen=True)
class StoreSettings:
    cache_alias: str = DEFAULTS["CACHE_ALIAS"]
    key_prefix: str = DEFAULTS["KEY_PREFIX"]
    # Assumed capacity of the backing store. An estimate, not a guarantee.
    capacity_bytes: int = DEFAULTS["CAPACITY_BYTES"]
    quota_bytes: Optional[int] = DEFAULTS["QUOTA_BYTES"]
    near_limit_percent: int = DEFAULTS["NEAR_LIMIT_PERCENT"]
    backup_interval_seconds: float = DEFAULTS["BACKUP_INTERVAL_SECONDS"]
    initial_backup_delay_seconds: float = DEFAULTS["INITIAL_BACKUP_DELAY_SECONDS"]
    backup_throttle_seconds: float = DEFAULTS["BACKUP_THROTTLE_SECONDS"]
    sync_debounce_seconds: float = DEFAULTS["SYNC_DEBOUNCE_SECONDS"]
    notification_retention: int = DEFAULTS["NOTIFICATION_RETENTION"]
    history_retention: int = DEFAULTS["HISTORY_RETENTION"]
    paid_estimate_max_age_days: int = DEFAULTS["PAID_ESTIMATE_MAX_AGE_DAYS"]

    def with_overrides(self, **overrides: Any) -> "StoreSettings":
        return replace(self, **overrides)


def store_settings() -> StoreSettings:
    """Build :class:`StoreSettings` from ``settings.LOCAL_STORE``."""
    configured = {**DEFAULTS, **getattr(settings, "LOCAL_STORE", {})}
    values = {f.name: configured[f.name.upper()] for f in fields(StoreSettings)}
    return StoreSettings(**values)
