"""
Export and import of the whole store as one JSON document::

    {"exportDate": ..., "version": "1.0", "storageInfo": {...}, "data": {key: value}}

Unlike the backup snapshot, ``data`` holds parsed values, so the document can
be edited by hand and re-imported.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

from ..exceptions import DataCorrupted, StorageError
from .engine import SNAPSHOT_VERSION, StorageEngine, now_iso

logger = logging.getLogger(__name__)


def export_document(engine: StorageEngine) -> dict[str, Any]:
    document: dict[str, Any] = {
        "exportDate": now_iso(),
        "version": SNAPSHOT_VERSION,
        "storageInfo": engine.get_usage(),
        "data": {},
    }
    for key in [*engine.keys.table_keys(), engine.keys.metadata]:
        value = engine.get(key)
        if value is not None:
            document["data"][key] = value
    return document


def validate_document(document: Any) -> Mapping[str, Any]:
    if not isinstance(document, Mapping) or not isinstance(document.get("data"), Mapping):
        raise DataCorrupted("invalid import data")
    if not document.get("exportDate") or not document.get("version"):
        raise DataCorrupted("import document is missing exportDate or version")
    return document


def import_document(engine: StorageEngine, document: Any) -> list[str]:
    """Write every table in ``document``; returns the keys written.

    A backup is taken first. If any write fails the backup is restored and
    the original error is raised again.
    """
    document = validate_document(document)
    if engine.create_backup() is None:
        raise StorageError("could not take a backup before import; nothing was changed")
    written: list[str] = []
    try:
        for key, value in document["data"].items():
            if key == engine.keys.metadata:
                continue
            if not engine.keys.is_table_key(key):
                logger.warning("skipping unknown key %s in import", key)
                continue
            engine.set(key, value)
            written.append(key)
    except Exception:
        logger.exception("import failed after %d tables; restoring backup", len(written))
        try:
            engine.restore_from_backup()
        except StorageError:
            logger.exception("failed to restore backup after import failure")
        raise
    engine.update_metadata(lastImport=document["exportDate"])
    logger.info("imported %d tables from export of %s", len(written), document["exportDate"])
    return written
