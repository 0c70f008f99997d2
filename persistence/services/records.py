"""
Canonical record shapes and the table services built on them.

Callers may hand over records using either naming convention (``room_number``
or ``roomNumber``). :func:`to_canonical` folds every known alias into one
canonical camelCase field per table; the table services apply it on the way
in and on the way out so business logic only ever sees canonical names. The
engine itself stores whatever shape it is given.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from .engine import StorageEngine, matches
from .events import (
    ESTIMATE_CREATED,
    ESTIMATE_UPDATED,
    PATIENT_CHANGED,
    EstimateChanged,
    EventBus,
    PatientChanged,
)

_COMMON = {
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "patient_id": "patientId",
}

ALIASES: dict[str, dict[str, str]] = {
    "patients": {
        **_COMMON,
        "first_name": "firstName",
        "last_name": "lastName",
        "attending_physician": "attendingPhysician",
        "medical_record_number": "medicalRecordNumber",
    },
    "estimates": {
        **_COMMON,
        "patient_name": "patientName",
        "attending_physician": "attendingPhysician",
        "estimate_items": "services",
    },
    "inpatients": {
        **_COMMON,
        "attending_physician": "attendingPhysician",
        "room_type": "roomType",
        "room_number": "roomNumber",
        "room_id": "roomId",
        "admission_date": "admissionDate",
    },
}


def to_canonical(table: str, record: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``record`` with aliases renamed; canonical values win."""
    aliases = ALIASES.get(table, _COMMON)
    result: dict[str, Any] = {}
    for key, value in record.items():
        if key not in aliases:
            result[key] = value
    for alias, canonical in aliases.items():
        if alias in record and result.get(canonical) is None:
            result[canonical] = record[alias]
    return result


class TableService:
    """Canonical-shape CRUD for one table."""

    table = ""

    def __init__(self, engine: StorageEngine, bus: Optional[EventBus] = None) -> None:
        self.engine = engine
        self.bus = bus

    def canonical(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return to_canonical(self.table, record)

    def all(self) -> list[dict[str, Any]]:
        return [self.canonical(r) for r in self.engine.select(self.table)]

    def filter(self, **predicate: Any) -> list[dict[str, Any]]:
        return [r for r in self.all() if matches(r, predicate)]

    def get(self, record_id: str) -> Optional[dict[str, Any]]:
        found = self.engine.select(self.table, {"id": record_id})
        return self.canonical(found[0]) if found else None

    def create(self, data: Mapping[str, Any], *, notify: bool = True) -> dict[str, Any]:
        record = self.canonical(self.engine.insert(self.table, self.canonical(data)))
        if notify:
            self.created(record)
        return record

    def update(self, record_id: str, patch: Mapping[str, Any], *, notify: bool = True) -> dict[str, Any]:
        clean = self.canonical(patch)
        record = self.canonical(self.engine.update(self.table, record_id, clean))
        if notify:
            self.updated(record, clean)
        return record

    def delete(self, record_id: str) -> bool:
        return self.engine.delete(self.table, record_id)

    # hooks for domain events
    def created(self, record: dict[str, Any]) -> None:
        pass

    def updated(self, record: dict[str, Any], patch: dict[str, Any]) -> None:
        pass


class PatientService(TableService):
    table = "patients"

    def updated(self, record, patch):
        if self.bus is not None:
            self.bus.publish(PATIENT_CHANGED, PatientChanged(id=record["id"], patch=patch))


class EstimateService(TableService):
    table = "estimates"

    def for_patient(self, patient_id: str) -> list[dict[str, Any]]:
        return self.filter(patientId=patient_id)

    def _event(self, record):
        return EstimateChanged(
            id=record["id"],
            patient_id=record.get("patientId"),
            services=list(record.get("services") or []),
            data=record,
        )

    def created(self, record):
        if self.bus is not None:
            self.bus.publish(ESTIMATE_CREATED, self._event(record))

    def updated(self, record, patch):
        if self.bus is not None:
            self.bus.publish(ESTIMATE_UPDATED, self._event(record))


class InpatientService(TableService):
    table = "inpatients"

    def for_patient(self, patient_id: str) -> list[dict[str, Any]]:
        return self.filter(patientId=patient_id)

    def active(self) -> list[dict[str, Any]]:
        return self.filter(status="active")
