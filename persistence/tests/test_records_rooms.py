import pytest

from persistence.services.events import (
    ESTIMATE_CREATED,
    ESTIMATE_UPDATED,
    PATIENT_CHANGED,
    SYNC_COMPLETE,
    EstimateChanged,
    PatientChanged,
    SyncComplete,
)
from persistence.services.records import EstimateService, InpatientService, PatientService, to_canonical
from persistence.services.rooms import classify_room, line_items, placement_dict


# ---------------------------------------------------------------------------
# field naming
# ---------------------------------------------------------------------------

def test_to_canonical_renames_aliases():
    record = to_canonical("inpatients", {"room_number": "12", "patient_id": "P1", "status": "active"})
    assert record == {"roomNumber": "12", "patientId": "P1", "status": "active"}


def test_to_canonical_prefers_canonical_value():
    record = to_canonical("inpatients", {"roomNumber": "7", "room_number": "12"})
    assert record == {"roomNumber": "7"}


def test_to_canonical_maps_estimate_items_to_services():
    items = [{"name": "Анализ крови"}]
    assert to_canonical("estimates", {"estimate_items": items})["services"] == items


def test_service_reads_legacy_rows_canonically(engine):
    engine.insert("inpatients", {"id": "i1", "patient_id": "P1", "room_type": "vip"})
    inpatients = InpatientService(engine)
    assert inpatients.for_patient("P1")[0]["roomType"] == "vip"
    assert inpatients.get("i1")["patientId"] == "P1"
    assert inpatients.get("missing") is None


def test_service_writes_canonical_fields(engine):
    InpatientService(engine).create({"id": "i1", "attending_physician": "Dr. X", "status": "active"})
    stored = engine.select("inpatients")[0]
    assert stored["attendingPhysician"] == "Dr. X"
    assert "attending_physician" not in stored
    assert [r["id"] for r in InpatientService(engine).active()] == ["i1"]


# ---------------------------------------------------------------------------
# event bus
# ---------------------------------------------------------------------------

def test_bus_delivers_to_every_subscriber_and_survives_failures(bus):
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(PATIENT_CHANGED, broken)
    bus.subscribe(PATIENT_CHANGED, seen.append)
    delivered = bus.publish(PATIENT_CHANGED, PatientChanged(id="P1"))
    assert delivered == 1
    assert seen == [PatientChanged(id="P1")]


def test_bus_unsubscribe_stops_delivery(bus):
    seen = []
    unsubscribe = bus.subscribe(SYNC_COMPLETE, seen.append)
    unsubscribe()
    assert bus.publish(SYNC_COMPLETE, SyncComplete(type="patient", id="P1")) == 0
    assert seen == []


def test_bus_rejects_wrong_payload_and_unknown_topic(bus):
    with pytest.raises(TypeError):
        bus.publish(PATIENT_CHANGED, {"id": "P1"})
    with pytest.raises(ValueError):
        bus.subscribe("patient.deleted", print)


def test_patient_update_publishes_patch(engine, bus):
    seen = []
    bus.subscribe(PATIENT_CHANGED, seen.append)
    patients = PatientService(engine, bus)
    patients.create({"id": "P1", "firstName": "Анна"})
    assert seen == []
    patients.update("P1", {"attending_physician": "Dr. X"})
    assert seen == [PatientChanged(id="P1", patch={"attendingPhysician": "Dr. X"})]


def test_estimate_create_and_update_publish_events(engine, bus):
    created, updated = [], []
    bus.subscribe(ESTIMATE_CREATED, created.append)
    bus.subscribe(ESTIMATE_UPDATED, updated.append)
    estimates = EstimateService(engine, bus)
    services = [{"name": "Палата VIP"}]
    estimates.create({"id": "e1", "patient_id": "P1", "estimate_items": services})
    estimates.update("e1", {"status": "paid"})
    estimates.update("e1", {"status": "draft"}, notify=False)

    assert isinstance(created[0], EstimateChanged)
    assert (created[0].id, created[0].patient_id, created[0].services) == ("e1", "P1", services)
    assert len(updated) == 1
    assert updated[0].data["status"] == "paid"


# ---------------------------------------------------------------------------
# room classification
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("item, room_type, label", [
    ({"name": "Лечение в палате VIP"}, "vip", "VIP"),
    ({"name": "Размещение в палате эконом"}, "economy", "Эконом"),
    ({"name": "Палата комфорт"}, "comfort", "Комфорт"),
    ({"name": "Койко-день"}, "standard", "Стандарт"),
    ({"name": "Pharmacy", "category": "ward_treatment"}, "standard", "Стандарт"),
    ({"name": "Accommodation", "code": "ROOM-COMFORT"}, "comfort", "Комфорт"),
])
def test_classify_room_tiers(item, room_type, label):
    placement = classify_room([item])
    assert placement.room_type == room_type
    assert placement.room_number == label


def test_classify_room_ignores_non_placement_items():
    assert classify_room([{"name": "Анализ крови", "category": "lab"}, {"name": "МРТ"}]) is None
    assert placement_dict(None) is None


def test_classify_room_uses_first_placement_item_and_duration():
    placement = classify_room([
        {"name": "Консультация"},
        {"name": "Палата эконом", "quantity": 4},
        {"name": "Палата VIP", "days": 2},
    ])
    assert placement_dict(placement) == {
        "roomType": "economy", "roomNumber": "Эконом", "days": 4, "serviceName": "Палата эконом",
    }
    assert classify_room([{"name": "Палата"}]).days == 1


def test_line_items_accepts_both_spellings():
    assert line_items({"services": [{"name": "a"}, "junk"]}) == [{"name": "a"}]
    assert line_items({"estimate_items": [{"name": "b"}]}) == [{"name": "b"}]
    assert line_items({}) == []
