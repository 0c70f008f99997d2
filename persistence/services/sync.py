"""
Cross-table synchronization.

The patient record is the source of truth for the patient's name and
attending physician; estimates carry the billed ward services that decide
the room category. Changes cascade::

    patient  --name, physician-->  estimates, inpatients
    estimate --room category---->  inpatients

Domain events are queued and drained after a debounce window. Every
enqueue cancels the pending timer and schedules a new one (last write wins);
a flush that has started is never cancelled, so cascades must tolerate being
applied twice. Only one flush runs at a time.

Public coroutines never raise: failures come back as
``{"success": False, "error": ...}`` and a failed cascade does not roll back
the caller's write to the patient or estimate.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from .engine import StorageEngine
from .events import (
    ESTIMATE_CREATED,
    ESTIMATE_UPDATED,
    PATIENT_CHANGED,
    SYNC_COMPLETE,
    EstimateChanged,
    EventBus,
    PatientChanged,
    SyncComplete,
)
from .records import EstimateService, InpatientService, PatientService, to_canonical
from .rooms import classify_room, line_items, placement_dict
from .scheduling import ScheduledTask

logger = logging.getLogger(__name__)

UNASSIGNED_PHYSICIAN = "Не назначен"
UNKNOWN_PATIENT = "Unknown Patient"

PATIENT = "patient"
ESTIMATE = "estimate"

Broadcaster = Callable[[SyncComplete], Awaitable[None]]


@dataclass
class SyncQueueItem:
    type: str
    id: str
    data: Optional[dict[str, Any]] = None
    timestamp: float = field(default_factory=time.time)


class SyncOrchestrator:
    DEBOUNCE_SECONDS = 0.5

    def __init__(
        self,
        engine: StorageEngine,
        bus: EventBus,
        *,
        scheduler=None,
        broadcaster: Optional[Broadcaster] = None,
        debounce_seconds: Optional[float] = None,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.scheduler = scheduler
        self.broadcaster = broadcaster
        self.debounce_seconds = self.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        # writes made by the cascade itself must not raise new domain events
        self.patients = PatientService(engine)
        self.estimates = EstimateService(engine)
        self.inpatients = InpatientService(engine)
        self.queue: deque[SyncQueueItem] = deque()
        self.flushing = False
        self._timer: Optional[ScheduledTask] = None
        self._unsubscribe: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Event wiring
    # ------------------------------------------------------------------
    def attach(self) -> None:
        if self._unsubscribe:
            return
        self._unsubscribe = [
            self.bus.subscribe(PATIENT_CHANGED, self._on_patient_changed),
            self.bus.subscribe(ESTIMATE_CREATED, self._on_estimate_changed),
            self.bus.subscribe(ESTIMATE_UPDATED, self._on_estimate_changed),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_patient_changed(self, event: PatientChanged) -> None:
        if event.id:
            self.enqueue(PATIENT, event.id, event.patch)

    def _on_estimate_changed(self, event: EstimateChanged) -> None:
        if event.id and event.patient_id:
            self.enqueue(ESTIMATE, event.id, {**event.data, "patientId": event.patient_id, "services": event.services})

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------
    def enqueue(self, type: str, id: str, data: Optional[dict[str, Any]] = None) -> None:
        if type not in (PATIENT, ESTIMATE):
            logger.error("ignoring sync job of unknown type %r for %s", type, id)
            return
        self.queue.append(SyncQueueItem(type=type, id=id, data=None if data is None else dict(data)))
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.scheduler is None:
            return
        try:
            self._timer = self.scheduler.call_later(self.debounce_seconds, self._flush_after_debounce)
        except RuntimeError:
            logger.warning("no running event loop; %d sync job(s) wait for the next flush", len(self.queue))

    async def _flush_after_debounce(self) -> None:
        self._timer = None
        await self.flush()

    async def flush(self) -> int:
        """Drain the queue in FIFO order; returns the number of jobs run."""
        if self.flushing or not self.queue:
            return 0
        self.flushing = True
        processed = 0
        logger.info("processing %d queued sync operations", len(self.queue))
        try:
            while self.queue:
                item = self.queue.popleft()
                if item.type == PATIENT:
                    await self.sync_patient(item.id, item.data)
                else:
                    await self.sync_estimate(item.id, item.data)
                processed += 1
        finally:
            self.flushing = False
        logger.info("queue processing complete (%d jobs)", processed)
        return processed

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.detach()

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------
    async def sync_patient(self, patient_id: str, updates: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        logger.info("starting patient data synchronization for %s", patient_id)
        try:
            patient = self.patients.get(patient_id)
            if not patient:
                logger.warning("patient not found: %s", patient_id)
                return {"success": False, "error": "Patient not found"}
            sync_data = self.patient_sync_data(patient, updates)
            estimates = self._cascade_estimates(patient_id, sync_data)
            inpatients = self._cascade_inpatients(patient_id, sync_data)
            logger.info("patient %s synced: %d estimates, %d inpatient records", patient_id, estimates, inpatients)
            await self._emit(SyncComplete(type=PATIENT, id=patient_id, payload=sync_data))
            return {"success": True, "syncData": sync_data}
        except Exception as exc:
            logger.exception("patient sync failed for %s", patient_id)
            return {"success": False, "error": str(exc)}

    @staticmethod
    def patient_sync_data(patient: dict[str, Any], updates: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        updates = to_canonical("patients", updates or {})
        name = patient.get("name") or f"{patient.get('firstName') or ''} {patient.get('lastName') or ''}".strip()
        return {
            "name": name,
            "attendingPhysician": (
                updates.get("attendingPhysician") or patient.get("attendingPhysician") or UNASSIGNED_PHYSICIAN
            ),
            "medicalRecordNumber": patient.get("medicalRecordNumber"),
            "patientId": patient["id"],
        }

    def _cascade_estimates(self, patient_id: str, sync_data: dict[str, Any]) -> int:
        estimates = self.estimates.for_patient(patient_id)
        for estimate in estimates:
            self.estimates.update(
                estimate["id"],
                {"patientName": sync_data["name"], "attendingPhysician": sync_data["attendingPhysician"]},
                notify=False,
            )
        return len(estimates)

    def _cascade_inpatients(self, patient_id: str, sync_data: dict[str, Any]) -> int:
        inpatients = self.inpatients.for_patient(patient_id)
        for inpatient in inpatients:
            self.inpatients.update(
                inpatient["id"],
                {"name": sync_data["name"], "attendingPhysician": sync_data["attendingPhysician"]},
                notify=False,
            )
        return len(inpatients)

    async def sync_estimate(self, estimate_id: str, estimate_data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        logger.info("starting estimate data synchronization for %s", estimate_id)
        try:
            estimate = to_canonical("estimates", estimate_data or {})
            if not estimate.get("patientId"):
                # payload without a patient: use the stored estimate
                stored = self.estimates.get(estimate_id) or {}
                estimate = {**stored, **{k: v for k, v in estimate.items() if v is not None}}
            patient_id = estimate.get("patientId")
            if not patient_id:
                logger.warning("no patient id in estimate %s", estimate_id)
                return {"success": False, "error": "Patient ID required"}

            placement = classify_room(line_items(estimate))
            if placement is None:
                return {"success": True, "roomTypeData": None}

            inpatients = self.inpatients.for_patient(patient_id)
            if not inpatients:
                logger.info("no inpatient records for patient %s; room type not synced", patient_id)
            changed = 0
            for inpatient in inpatients:
                if inpatient.get("roomType") == placement.room_type:
                    continue
                self.inpatients.update(
                    inpatient["id"],
                    {"roomType": placement.room_type, "roomNumber": placement.room_number},
                    notify=False,
                )
                changed += 1
                logger.info(
                    "room type updated for inpatient %s: %s -> %s",
                    inpatient["id"], inpatient.get("roomType"), placement.room_type,
                )
            room_data = placement_dict(placement)
            if changed:
                await self._emit(
                    SyncComplete(type=ESTIMATE, id=estimate_id, payload={"patientId": patient_id, **room_data})
                )
            return {"success": True, "roomTypeData": room_data}
        except Exception as exc:
            logger.exception("estimate sync failed for %s", estimate_id)
            return {"success": False, "error": str(exc)}

    async def _emit(self, event: SyncComplete) -> None:
        self.bus.publish(SYNC_COMPLETE, event)
        if self.broadcaster is not None:
            await self.broadcaster(event)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    async def get_synced_patient_data(self, patient_id: str) -> Optional[dict[str, Any]]:
        try:
            patient = self.patients.get(patient_id)
            if not patient:
                return None
            estimates = self.estimates.for_patient(patient_id)
            inpatients = self.inpatients.for_patient(patient_id)
            latest = max(estimates, key=lambda e: e.get("createdAt") or "", default=None)
            placement = classify_room(line_items(latest)) if latest else None
            return {
                "patient": patient,
                "estimates": estimates,
                "inpatients": inpatients,
                "roomTypeData": placement_dict(placement),
                "syncStatus": {
                    "hasEstimates": bool(estimates),
                    "hasInpatientRecords": bool(inpatients),
                    "roomTypeAssigned": placement is not None,
                },
            }
        except Exception:
            logger.exception("failed to get synced patient data for %s", patient_id)
            return None

    async def force_sync_patient(self, patient_id: str) -> dict[str, Any]:
        logger.info("force sync triggered for patient %s", patient_id)
        return await self.sync_patient(patient_id)

    async def check_sync_status(self, patient_id: str) -> dict[str, Any]:
        data = await self.get_synced_patient_data(patient_id)
        if data is None:
            return {"synced": False, "error": "Patient not found"}
        issues: list[str] = []
        room_type = (data["roomTypeData"] or {}).get("roomType")
        for inpatient in data["inpatients"]:
            if not inpatient.get("name") or inpatient.get("name") == UNKNOWN_PATIENT:
                issues.append(f"Inpatient record {inpatient['id']} missing patient name")
            if inpatient.get("attendingPhysician") in (None, "", UNASSIGNED_PHYSICIAN):
                issues.append(f"Inpatient record {inpatient['id']} missing physician assignment")
            if room_type and inpatient.get("roomType") != room_type:
                issues.append(f"Inpatient record {inpatient['id']} room type mismatch")
        return {"synced": not issues, "issues": issues, "data": data}
