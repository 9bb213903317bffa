# tests/test_patients.py
from datetime import date, datetime

import pytest

from voice_store import models, schemas
from voice_store.errors import ConstraintViolationError, StoreValidationError


def make_child(name="Sofia", age=7, medicaid_id="MCD-1001"):
    return schemas.ChildCreate(name=name, age=age, medicaid_id=medicaid_id)


def make_appointment(patient_id, when, **kwargs):
    return schemas.AppointmentCreate(
        patient_id=patient_id,
        appointment_time=when,
        appointment_type=kwargs.pop("appointment_type", "exam"),
        location=kwargs.pop("location", "Main Street Clinic"),
        **kwargs,
    )


# ==================== PATIENTS ====================

def test_create_and_get_patient(adapter, patient_id):
    patient = adapter.get_patient(patient_id)
    assert patient is not None
    assert patient.id == patient_id
    assert patient.parent_name == "Maria Lopez"
    assert patient.address.city == "Springfield"
    assert patient.preferred_language == "English"
    assert patient.children == []


def test_get_patient_by_phone(adapter, patient_id):
    assert adapter.get_patient_by_phone("+15550001111").id == patient_id
    assert adapter.get_patient_by_phone("+15559999999") is None


def test_missing_patient_is_none(adapter):
    assert adapter.get_patient("PAT-missing") is None


def test_duplicate_phone_is_constraint_violation(adapter, patient_id):
    with pytest.raises(ConstraintViolationError):
        adapter.create_patient(schemas.PatientCreate(phone_number="+15550001111", parent_name="Someone Else"))
    assert len(adapter.list_patients()) == 1


def test_caller_supplied_id_is_kept(adapter):
    patient_id = adapter.create_patient(
        schemas.PatientCreate(id="PAT-fixed", phone_number="+15550002222", parent_name="Ana Ruiz")
    )
    assert patient_id == "PAT-fixed"
    assert adapter.get_patient("PAT-fixed").parent_name == "Ana Ruiz"


def test_update_patient_writes_only_set_fields(adapter, patient_id):
    adapter.update_patient(patient_id, schemas.PatientUpdate(notes="Prefers morning calls",
                                                             address=schemas.AddressUpdate(city="Chicago")))
    patient = adapter.get_patient(patient_id)
    assert patient.notes == "Prefers morning calls"
    assert patient.address.city == "Chicago"
    assert patient.address.street == "12 Elm St"
    assert patient.parent_name == "Maria Lopez"


def test_empty_update_is_noop(adapter, patient_id):
    adapter.update_patient(patient_id, schemas.PatientUpdate())
    assert adapter.get_patient(patient_id).parent_name == "Maria Lopez"


def test_update_missing_patient_is_validation_error(adapter):
    with pytest.raises(StoreValidationError):
        adapter.update_patient("PAT-missing", schemas.PatientUpdate(notes="x"))


def test_delete_missing_patient_is_noop(adapter):
    adapter.delete_patient("PAT-missing")


def test_list_patients_paginates(adapter):
    for index in range(3):
        adapter.create_patient(schemas.PatientCreate(phone_number=f"+1555000300{index}", parent_name=f"Parent {index}"))
    assert len(adapter.list_patients(limit=2)) == 2
    assert len(adapter.list_patients(limit=2, offset=2)) == 1


# ==================== CHILDREN ====================

def test_children_belong_to_patient(adapter, patient_id):
    first = adapter.create_child(patient_id, make_child())
    second = adapter.create_child(patient_id, make_child(name="Mateo", age=4, medicaid_id="MCD-1002"))

    children = adapter.list_children(patient_id)
    assert [child.id for child in children] == [first, second]
    assert adapter.get_patient(patient_id).children[1].name == "Mateo"

    adapter.update_child(second, schemas.ChildUpdate(age=5))
    assert adapter.get_child(second).age == 5

    adapter.delete_child(first)
    assert adapter.get_child(first) is None


def test_child_for_unknown_patient_is_constraint_violation(adapter):
    with pytest.raises(ConstraintViolationError):
        adapter.create_child("PAT-missing", make_child())


# ==================== APPOINTMENTS ====================

def test_appointment_gets_booking_id(adapter, patient_id):
    appointment_id = adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 14, 10, 0)))
    appointment = adapter.get_appointment(appointment_id)
    assert appointment.booking_id.startswith("BK-")
    assert appointment.status == models.AppointmentStatus.pending
    assert adapter.get_appointment_by_booking_id(appointment.booking_id).id == appointment_id


def test_duplicate_booking_id_is_constraint_violation(adapter, patient_id):
    adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 14, 10, 0), booking_id="BK-1"))
    with pytest.raises(ConstraintViolationError):
        adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 15, 10, 0), booking_id="BK-1"))


def test_appointment_filters(adapter, patient_id):
    morning = adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 14, 9, 0)))
    afternoon = adapter.create_appointment(
        make_appointment(patient_id, datetime(2025, 3, 14, 15, 0), status="confirmed")
    )
    next_day = adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 15, 9, 0)))

    on_day = adapter.list_appointments(schemas.AppointmentFilters(date=date(2025, 3, 14)))
    assert [a.id for a in on_day] == [morning, afternoon]

    confirmed = adapter.list_appointments(schemas.AppointmentFilters(status=["confirmed"]))
    assert [a.id for a in confirmed] == [afternoon]

    pending_or_confirmed = adapter.list_appointments(schemas.AppointmentFilters(status=["pending", "confirmed"]))
    assert {a.id for a in pending_or_confirmed} == {morning, afternoon, next_day}

    window = adapter.list_appointments(schemas.AppointmentFilters(
        from_date=datetime(2025, 3, 14, 12, 0), to_date=datetime(2025, 3, 16, 0, 0),
    ))
    assert [a.id for a in window] == [afternoon, next_day]

    assert len(adapter.list_appointments()) == 3


def test_update_appointment_status(adapter, patient_id):
    appointment_id = adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 14, 9, 0)))
    adapter.update_appointment(appointment_id, schemas.AppointmentUpdate(
        status="cancelled", cancellation_reason="Family travel",
    ))
    appointment = adapter.get_appointment(appointment_id)
    assert appointment.status == models.AppointmentStatus.cancelled
    assert appointment.cancellation_reason == "Family travel"
    assert appointment.location == "Main Street Clinic"


def test_link_child_is_idempotent(adapter, patient_id):
    child_id = adapter.create_child(patient_id, make_child())
    appointment_id = adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 14, 9, 0)))

    adapter.link_child_to_appointment(appointment_id, child_id)
    adapter.link_child_to_appointment(appointment_id, child_id)

    linked = adapter.get_appointment_children(appointment_id)
    assert [child.id for child in linked] == [child_id]


def test_delete_patient_cascades(adapter, patient_id, conversation_id):
    child_id = adapter.create_child(patient_id, make_child())
    appointment_id = adapter.create_appointment(make_appointment(patient_id, datetime(2025, 3, 14, 9, 0)))
    adapter.link_child_to_appointment(appointment_id, child_id)

    adapter.delete_patient(patient_id)

    assert adapter.get_patient(patient_id) is None
    assert adapter.get_child(child_id) is None
    assert adapter.get_appointment(appointment_id) is None
    assert adapter.get_appointment_children(appointment_id) == []
    # conversation history outlives the patient record
    conversation = adapter.get_conversation(conversation_id)
    assert conversation is not None
    assert conversation.patient_id is None
