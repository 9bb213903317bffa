# tests/test_database_api.py
import base64

from fastapi.testclient import TestClient

from voice_store import schemas
from voice_store.main import create_app

PREFIX = "/api/db"

PATIENT = {
    "phone_number": "+15550400001",
    "parent_name": "Maria Lopez",
    "address": {"street": "12 Elm St", "city": "Springfield", "state": "IL", "zip": "62701"},
}


def create_patient(client, **overrides):
    response = client.post(f"{PREFIX}/patients", json={**PATIENT, **overrides})
    assert response.status_code == 201
    return response.json()["id"]


def test_health_reports_backend_and_counts(api_client):
    create_patient(api_client)
    response = api_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["backend"] == "embedded"
    assert data["schema_version"] == 3
    assert data["stats"]["patients"] == 1


def test_create_and_fetch_patient(api_client):
    patient_id = create_patient(api_client)

    response = api_client.get(f"{PREFIX}/patients/{patient_id}")
    assert response.status_code == 200
    assert response.json()["parent_name"] == "Maria Lopez"

    by_phone = api_client.get(f"{PREFIX}/patients/phone/%2B15550400001")
    assert by_phone.json()["id"] == patient_id

    listed = api_client.get(f"{PREFIX}/patients")
    assert [p["id"] for p in listed.json()["patients"]] == [patient_id]


def test_missing_patient_is_404(api_client):
    response = api_client.get(f"{PREFIX}/patients/PAT-missing")
    assert response.status_code == 404
    assert response.json() == {"error": "Patient not found"}


def test_duplicate_phone_is_409(api_client):
    create_patient(api_client)
    response = api_client.post(f"{PREFIX}/patients", json=PATIENT)
    assert response.status_code == 409
    body = response.json()
    assert body["error_type"] == "ConstraintViolationError"
    assert "UNIQUE" in body["error"]


def test_invalid_body_is_422(api_client):
    response = api_client.post(f"{PREFIX}/patients", json={"parent_name": "No Phone"})
    assert response.status_code == 422
    body = response.json()
    assert body["error_type"] == "RequestValidationError"
    assert "phone_number" in body["error"]


def test_update_missing_target_is_422(api_client):
    response = api_client.put(f"{PREFIX}/patients/PAT-missing", json={"notes": "x"})
    assert response.status_code == 422
    assert response.json()["error_type"] == "StoreValidationError"


def test_update_and_delete_return_204(api_client):
    patient_id = create_patient(api_client)
    assert api_client.put(f"{PREFIX}/patients/{patient_id}", json={"notes": "hello"}).status_code == 204
    assert api_client.get(f"{PREFIX}/patients/{patient_id}").json()["notes"] == "hello"
    assert api_client.delete(f"{PREFIX}/patients/{patient_id}").status_code == 204
    assert api_client.get(f"{PREFIX}/patients/{patient_id}").status_code == 404


def test_transaction_state_errors_are_409(api_client):
    response = api_client.post(f"{PREFIX}/transaction/commit")
    assert response.status_code == 409
    assert response.json()["error_type"] == "TransactionStateError"

    assert api_client.post(f"{PREFIX}/transaction/begin").status_code == 204
    assert api_client.post(f"{PREFIX}/transaction/begin").status_code == 409
    assert api_client.post(f"{PREFIX}/transaction/rollback").status_code == 204


def test_audio_travels_as_base64(api_client, embedded):
    conversation_id = embedded.create_conversation(schemas.ConversationCreate(
        phone_number="+15550400001", direction="inbound", provider="openai", started_at="2025-03-10T09:00:00",
    ))
    audio = b"\x00\xffRIFF"
    response = api_client.post(f"{PREFIX}/conversations/{conversation_id}/turns", json={
        "conversation_id": conversation_id, "turn_number": 1, "role": "user", "content_type": "audio",
        "audio_data": base64.b64encode(audio).decode("ascii"), "timestamp": "2025-03-10T09:00:02",
    })
    assert response.status_code == 201

    assert embedded.get_conversation_history(conversation_id)[0].audio_data == audio
    turns = api_client.get(f"{PREFIX}/conversations/{conversation_id}/turns").json()["turns"]
    assert turns[0]["audio_data"] == base64.b64encode(audio).decode("ascii")
    assert api_client.get(f"{PREFIX}/conversations/{conversation_id}/turns/count").json() == {"count": 1}


def test_turn_with_mismatched_conversation_is_422(api_client):
    response = api_client.post(f"{PREFIX}/conversations/CONV-a/turns", json={
        "conversation_id": "CONV-b", "turn_number": 1, "role": "user", "content_type": "text",
        "timestamp": "2025-03-10T09:00:02",
    })
    assert response.status_code == 422


def test_invalid_base64_audio_is_422(api_client):
    response = api_client.post(f"{PREFIX}/conversations/CONV-a/turns", json={
        "conversation_id": "CONV-a", "turn_number": 1, "role": "user", "content_type": "audio",
        "audio_data": "***not base64***", "timestamp": "2025-03-10T09:00:02",
    })
    assert response.status_code == 422


def test_appointment_query_filters(api_client):
    patient_id = create_patient(api_client)
    for when, state in (("2025-03-14T09:00:00", "pending"), ("2025-03-14T15:00:00", "confirmed"),
                        ("2025-03-15T09:00:00", "cancelled")):
        api_client.post(f"{PREFIX}/appointments", json={
            "patient_id": patient_id, "appointment_time": when, "appointment_type": "exam",
            "location": "Main Street Clinic", "status": state,
        })

    on_day = api_client.get(f"{PREFIX}/appointments", params={"date": "2025-03-14"}).json()["appointments"]
    assert len(on_day) == 2
    open_ones = api_client.get(f"{PREFIX}/appointments", params=[("status", "pending"), ("status", "confirmed")])
    assert len(open_ones.json()["appointments"]) == 2
    assert api_client.get(f"{PREFIX}/appointments", params={"status": "bogus"}).status_code == 422


def test_raw_query_rows(api_client):
    create_patient(api_client)
    response = api_client.post(f"{PREFIX}/query", json={"sql": "SELECT parent_name FROM patients"})
    assert response.json() == {"rows": [{"parent_name": "Maria Lopez"}]}

    bad = api_client.post(f"{PREFIX}/query", json={"sql": "SELECT 1", "params": "oops"})
    assert bad.status_code == 422


def test_export_and_import_over_http(api_client):
    patient_id = create_patient(api_client)
    exported = api_client.get(f"{PREFIX}/export")
    assert exported.headers["content-type"].startswith("application/json")

    api_client.delete(f"{PREFIX}/patients/{patient_id}")
    response = api_client.post(f"{PREFIX}/import", content=exported.content,
                               headers={"Content-Type": "application/json"})
    assert response.status_code == 204
    assert api_client.get(f"{PREFIX}/patients/{patient_id}").status_code == 200

    rejected = api_client.post(f"{PREFIX}/import", content=b"{broken")
    assert rejected.status_code == 422
    assert rejected.json()["error_type"] == "StoreValidationError"


def test_lifespan_seeds_default_config(embedded):
    with TestClient(create_app(embedded)) as client:
        configs = client.get(f"{PREFIX}/demo-configs").json()["demo_configs"]
        assert [c["slug"] for c in configs] == ["default-demo"]
        assert configs[0]["is_default"] is True
