# tests/test_export_import.py
import json
from datetime import datetime

import pytest

from voice_store import schemas
from voice_store.errors import ConstraintViolationError, StoreValidationError


@pytest.fixture
def populated(adapter, patient_id, conversation_id):
    child_id = adapter.create_child(patient_id, schemas.ChildCreate(name="Leo", age=6, medicaid_id="MCD-1"))
    appointment_id = adapter.create_appointment(schemas.AppointmentCreate(
        patient_id=patient_id, appointment_time=datetime(2025, 3, 14, 10, 0),
        appointment_type="cleaning", location="Main Street Clinic",
    ))
    adapter.link_child_to_appointment(appointment_id, child_id)
    adapter.log_conversation_turn(schemas.ConversationTurnCreate(
        conversation_id=conversation_id, turn_number=1, role="user", content_type="audio",
        audio_data=b"\x00\x01binary\xff", timestamp=datetime(2025, 3, 10, 9, 0, 5),
    ))
    adapter.log_audit(schemas.AuditRecordCreate(
        table_name="patients", record_id=patient_id, operation="INSERT", new_value={"parent_name": "Maria Lopez"},
    ))
    return {"patient_id": patient_id, "child_id": child_id, "appointment_id": appointment_id,
            "conversation_id": conversation_id}


def test_export_contains_every_table(adapter, populated):
    document = json.loads(adapter.export_to_json())
    assert document["version"] == 1
    assert "exported_at" in document
    for key in ("patients", "children", "appointments", "appointment_children", "conversations",
                "conversation_turns", "function_calls", "audit_trail"):
        assert isinstance(document[key], list)
    assert [row["id"] for row in document["patients"]] == [populated["patient_id"]]
    assert document["appointment_children"] == [
        {"appointment_id": populated["appointment_id"], "child_id": populated["child_id"]}
    ]


def test_export_import_roundtrip(adapter, populated):
    exported = adapter.export_to_json()

    adapter.create_patient(schemas.PatientCreate(phone_number="+15550009999", parent_name="Added Later"))
    adapter.import_from_json(exported)

    assert adapter.get_patient_by_phone("+15550009999") is None
    patient = adapter.get_patient(populated["patient_id"])
    assert patient.parent_name == "Maria Lopez"
    assert [child.id for child in patient.children] == [populated["child_id"]]
    assert [c.id for c in adapter.get_appointment_children(populated["appointment_id"])] == [populated["child_id"]]

    history = adapter.get_conversation_history(populated["conversation_id"])
    assert history[0].audio_data == b"\x00\x01binary\xff"
    assert history[0].timestamp == datetime(2025, 3, 10, 9, 0, 5)

    records = adapter.get_audit_records("patients", populated["patient_id"])
    assert records[0].new_value == {"parent_name": "Maria Lopez"}

    # export of the re-imported store carries the same rows
    again = json.loads(adapter.export_to_json())
    first = json.loads(exported)
    for key in ("patients", "children", "appointments", "conversation_turns", "audit_trail"):
        assert again[key] == first[key]


def test_invalid_json_changes_nothing(adapter, populated):
    with pytest.raises(StoreValidationError):
        adapter.import_from_json("{not json")
    assert adapter.get_patient(populated["patient_id"]) is not None


def test_newer_version_is_rejected(adapter, populated):
    document = json.loads(adapter.export_to_json())
    document["version"] = 2
    document["patients"] = []
    with pytest.raises(StoreValidationError):
        adapter.import_from_json(json.dumps(document))
    assert adapter.get_stats().patients == 1


def test_missing_tables_are_rejected(adapter, populated):
    with pytest.raises(StoreValidationError):
        adapter.import_from_json(json.dumps({"version": 1, "patients": []}))
    assert adapter.get_stats().patients == 1


def test_import_with_dangling_reference_changes_nothing(adapter, populated):
    document = json.loads(adapter.export_to_json())
    document["children"].append({"id": 999, "patient_id": "PAT-ghost", "name": "Ghost", "age": 3,
                                 "medicaid_id": "MCD-0"})
    with pytest.raises(ConstraintViolationError):
        adapter.import_from_json(json.dumps(document))
    assert [c.id for c in adapter.list_children(populated["patient_id"])] == [populated["child_id"]]


@pytest.mark.parametrize("flag", ["false", "0", 2])
def test_non_boolean_flag_is_rejected(adapter, populated, flag):
    document = json.loads(adapter.export_to_json())
    document["appointments"][0]["confirmation_sent"] = flag
    with pytest.raises(StoreValidationError):
        adapter.import_from_json(json.dumps(document))
    assert adapter.get_appointment(populated["appointment_id"]) is not None


def test_integer_flags_import_as_booleans(adapter, populated):
    document = json.loads(adapter.export_to_json())
    document["appointments"][0]["confirmation_sent"] = 1
    adapter.import_from_json(json.dumps(document))
    assert adapter.get_appointment(populated["appointment_id"]).confirmation_sent is True
