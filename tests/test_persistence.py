# tests/test_persistence.py
import os
import threading
import time

import pytest

from voice_store import demo_schemas, schemas
from voice_store.adapters.embedded import EmbeddedDatabaseAdapter
from voice_store.database import decode_json
from voice_store.errors import MalformedDataError, StoreError
from voice_store.flush import DebouncedFlush
from voice_store.services.demo_config_service import DemoConfigService


def wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


# ==================== BYTE IMAGE ====================

def test_flush_then_reload(image_path):
    store = EmbeddedDatabaseAdapter(image_path=image_path, flush_delay=60)
    patient_id = store.create_patient(schemas.PatientCreate(phone_number="+15550200001", parent_name="Ana"))
    assert store.flush() is True
    assert os.path.exists(image_path)

    reopened = EmbeddedDatabaseAdapter(image_path=image_path, flush_delay=60)
    try:
        assert reopened.get_patient(patient_id).parent_name == "Ana"
    finally:
        reopened.close()
        store.close()


def test_close_flushes_pending_writes(image_path):
    store = EmbeddedDatabaseAdapter(image_path=image_path, flush_delay=60)
    store.create_patient(schemas.PatientCreate(phone_number="+15550200002", parent_name="Ben"))
    assert store.flusher.pending
    store.close()

    with EmbeddedDatabaseAdapter(image_path=image_path, flush_delay=60) as reopened:
        assert reopened.get_patient_by_phone("+15550200002") is not None
        # foreign keys are enforced again after loading an image
        child_id = reopened.create_child(
            reopened.get_patient_by_phone("+15550200002").id,
            schemas.ChildCreate(name="Cy", age=4, medicaid_id="MCD-9"),
        )
        assert reopened.get_child(child_id) is not None


def test_debounced_flush_writes_image_after_quiet_period(image_path):
    store = EmbeddedDatabaseAdapter(image_path=image_path, flush_delay=0.05)
    try:
        for index in range(3):
            store.create_patient(schemas.PatientCreate(phone_number=f"+1555020010{index}", parent_name="Burst"))
        assert wait_for(lambda: not store.flusher.pending)
        assert os.path.exists(image_path)
    finally:
        store.close()


def test_rolled_back_writes_are_not_persisted(image_path):
    store = EmbeddedDatabaseAdapter(image_path=image_path, flush_delay=60)
    store.begin_transaction()
    store.create_patient(schemas.PatientCreate(phone_number="+15550200003", parent_name="Gone"))
    store.rollback()
    store.close()

    with EmbeddedDatabaseAdapter(image_path=image_path) as reopened:
        assert reopened.get_patient_by_phone("+15550200003") is None


def test_closed_adapter_refuses_work():
    store = EmbeddedDatabaseAdapter()
    store.close()
    store.close()
    with pytest.raises(StoreError):
        store.get_stats()


# ==================== DEBOUNCE ====================

def test_debounce_coalesces_bursts():
    calls = []
    flusher = DebouncedFlush(lambda: calls.append(1) or True, delay=0.05)
    for _ in range(5):
        flusher.schedule()
    assert wait_for(lambda: flusher.flush_count == 1)
    time.sleep(0.1)
    assert len(calls) == 1
    flusher.shutdown()


def test_shutdown_runs_pending_flush():
    calls = []
    flusher = DebouncedFlush(lambda: calls.append(1) or True, delay=60)
    flusher.schedule()
    flusher.shutdown()
    assert calls == [1]
    assert not flusher.pending
    # nothing runs after shutdown
    flusher.schedule()
    assert not flusher.pending


def test_failed_flush_is_retried():
    attempts = []
    ready = threading.Event()

    def flush():
        attempts.append(1)
        return ready.is_set()

    flusher = DebouncedFlush(flush, delay=0.02)
    flusher.schedule()
    assert wait_for(lambda: len(attempts) >= 2)
    ready.set()
    assert wait_for(lambda: not flusher.pending)
    flusher.shutdown()


# ==================== MALFORMED JSON ====================

def test_decode_json_raises_malformed_data():
    with pytest.raises(MalformedDataError):
        decode_json("{oops")
    assert decode_json('{"a": 1}') == {"a": 1}


def test_malformed_audit_value_reads_as_none(embedded):
    audit_id = embedded.log_audit(schemas.AuditRecordCreate(
        table_name="patients", record_id="PAT-1", operation="UPDATE", new_value={"ok": True},
    ))
    embedded.execute_raw_query("UPDATE audit_trail SET new_value = ? WHERE id = ?", ["{broken", audit_id])

    records = embedded.get_audit_records("patients", "PAT-1")
    assert records[0].new_value is None
    assert records[0].operation == "UPDATE"


def test_malformed_satellite_json_falls_back_to_defaults(embedded):
    service = DemoConfigService(embedded)
    config_id = service.create(demo_schemas.DemoConfigCreate(
        name="Malformed",
        agent_config=demo_schemas.AgentConfig(
            agent_name="Riley",
            objection_handling=[demo_schemas.ObjectionResponse(objection="Too busy", response="It takes 2 minutes")],
        ),
        scenario=demo_schemas.ScenarioConfig(key_talking_points=["Free for Medicaid members"]),
    ))
    embedded.execute_raw_query(
        "UPDATE demo_agent_configs SET objection_handling = ? WHERE demo_config_id = ?", ["not json", config_id],
    )
    embedded.execute_raw_query(
        "UPDATE demo_scenarios SET key_talking_points = ? WHERE demo_config_id = ?",
        ['{"wrong": "shape"}', config_id],
    )

    config = service.get(config_id)
    assert config.agent_config.objection_handling == []
    assert config.agent_config.agent_name == "Riley"
    assert config.scenario.key_talking_points == []
