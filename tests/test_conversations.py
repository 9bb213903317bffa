# tests/test_conversations.py
from datetime import datetime, timedelta

import pytest

from voice_store import models, schemas
from voice_store.errors import ConstraintViolationError, StoreValidationError

STARTED = datetime(2025, 3, 10, 9, 0, 0)


def make_turn(conversation_id, number, role="user", **kwargs):
    return schemas.ConversationTurnCreate(
        conversation_id=conversation_id,
        turn_number=number,
        role=role,
        content_type=kwargs.pop("content_type", "text"),
        timestamp=kwargs.pop("timestamp", STARTED + timedelta(seconds=number * 5)),
        **kwargs,
    )


def make_call(conversation_id, name="check_availability", offset=0):
    return schemas.FunctionCallCreate(
        conversation_id=conversation_id,
        function_name=name,
        arguments='{"date": "2025-03-14"}',
        timestamp=STARTED + timedelta(seconds=offset),
    )


# ==================== CONVERSATIONS ====================

def test_create_and_end_conversation(adapter, conversation_id, patient_id):
    conversation = adapter.get_conversation(conversation_id)
    assert conversation.patient_id == patient_id
    assert conversation.ended_at is None

    adapter.end_conversation(conversation_id, schemas.ConversationEnd(
        ended_at=STARTED + timedelta(minutes=3), duration_seconds=180, outcome="booked",
    ))
    conversation = adapter.get_conversation(conversation_id)
    assert conversation.duration_seconds == 180
    assert conversation.outcome == "booked"


def test_end_missing_conversation_is_validation_error(adapter):
    with pytest.raises(StoreValidationError):
        adapter.end_conversation("CONV-missing", schemas.ConversationEnd(
            ended_at=STARTED, duration_seconds=0, outcome="abandoned",
        ))


def test_list_conversations_filters(adapter, conversation_id, patient_id):
    other = adapter.create_conversation(schemas.ConversationCreate(
        phone_number="+15550007777", direction="inbound", provider="gemini",
        started_at=STARTED + timedelta(days=1),
    ))

    assert [c.id for c in adapter.list_conversations(schemas.ConversationFilters(patient_id=patient_id))] == [conversation_id]
    assert [c.id for c in adapter.list_conversations(schemas.ConversationFilters(phone_number="+15550007777"))] == [other]
    # newest first
    assert [c.id for c in adapter.list_conversations()] == [other, conversation_id]


# ==================== TURNS ====================

def test_turns_come_back_in_order_with_audio(adapter, conversation_id):
    audio = bytes(range(256)) * 4
    adapter.log_conversation_turn(make_turn(conversation_id, 2, role="assistant", content_text="Sure, which day?"))
    adapter.log_conversation_turn(make_turn(conversation_id, 1, content_type="audio", audio_data=audio))
    adapter.log_conversation_turn(make_turn(conversation_id, 3, content_text="Friday"))

    history = adapter.get_conversation_history(conversation_id)
    assert [turn.turn_number for turn in history] == [1, 2, 3]
    assert history[0].audio_data == audio
    assert history[0].content_type == models.ContentType.audio
    assert history[1].audio_data is None
    assert history[1].role == models.TurnRole.assistant
    assert adapter.get_conversation_turn_count(conversation_id) == 3


def test_turn_for_unknown_conversation_is_constraint_violation(adapter):
    with pytest.raises(ConstraintViolationError):
        adapter.log_conversation_turn(make_turn("CONV-missing", 1, content_text="hello"))


def test_turn_count_of_unknown_conversation_is_zero(adapter):
    assert adapter.get_conversation_turn_count("CONV-missing") == 0
    assert adapter.get_conversation_history("CONV-missing") == []


# ==================== FUNCTION CALLS ====================

def test_function_call_result_and_error(adapter, conversation_id):
    ok_id = adapter.log_function_call(make_call(conversation_id))
    bad_id = adapter.log_function_call(make_call(conversation_id, name="book_appointment", offset=10))

    adapter.update_function_call_result(ok_id, schemas.FunctionCallResult(
        result='{"slots": ["09:00"]}', execution_time_ms=42,
    ))
    adapter.update_function_call_error(bad_id, "No slots left")

    calls = {call.id: call for call in adapter.get_function_calls(conversation_id)}
    assert calls[ok_id].status == models.FunctionCallStatus.success
    assert calls[ok_id].execution_time_ms == 42
    assert calls[ok_id].result == '{"slots": ["09:00"]}'
    assert calls[bad_id].status == models.FunctionCallStatus.error
    assert calls[bad_id].error_message == "No slots left"


def test_function_call_result_for_missing_call_is_validation_error(adapter):
    with pytest.raises(StoreValidationError):
        adapter.update_function_call_result(999, schemas.FunctionCallResult(result="{}"))


# ==================== AUDIT ====================

def test_audit_records_newest_first(adapter):
    adapter.log_audit(schemas.AuditRecordCreate(
        table_name="patients", record_id="PAT-1", operation="INSERT", new_value={"parent_name": "Maria"},
    ))
    adapter.log_audit(schemas.AuditRecordCreate(
        table_name="patients", record_id="PAT-1", operation="UPDATE", field_name="notes",
        old_value=None, new_value="call after 5pm", changed_by="agent", metadata={"source": "call"},
    ))
    adapter.log_audit(schemas.AuditRecordCreate(table_name="patients", record_id="PAT-2", operation="DELETE"))

    records = adapter.get_audit_records("patients", "PAT-1")
    assert [record.operation for record in records] == [models.AuditOperation.UPDATE, models.AuditOperation.INSERT]
    assert records[0].new_value == "call after 5pm"
    assert records[0].changed_by == "agent"
    assert records[0].metadata == {"source": "call"}
    assert records[1].new_value == {"parent_name": "Maria"}


# ==================== CALL METRICS ====================

def test_call_metrics_roundtrip(adapter, conversation_id):
    metrics_id = adapter.create_call_metrics(schemas.CallMetricsCreate(
        conversation_id=conversation_id, outcome="partial", call_duration_seconds=95, completion_rate=0.5,
    ))
    adapter.update_call_metrics(metrics_id, schemas.CallMetricsUpdate(quality_score=4, user_satisfaction="satisfied"))

    metrics = adapter.get_call_metrics_by_conversation(conversation_id)
    assert metrics.id == metrics_id
    assert metrics.outcome == models.CallOutcome.partial
    assert metrics.quality_score == 4
    assert metrics.call_duration_seconds == 95
    assert [m.id for m in adapter.list_call_metrics()] == [metrics_id]


def test_one_metrics_row_per_conversation(adapter, conversation_id):
    adapter.create_call_metrics(schemas.CallMetricsCreate(conversation_id=conversation_id, outcome="success"))
    with pytest.raises(ConstraintViolationError):
        adapter.create_call_metrics(schemas.CallMetricsCreate(conversation_id=conversation_id, outcome="failure"))


def test_missing_metrics_is_none(adapter):
    assert adapter.get_call_metrics("CM-missing") is None
    assert adapter.get_call_metrics_by_conversation("CONV-missing") is None


# ==================== TEST SCENARIOS / EXECUTIONS ====================

def test_scenarios_and_executions(adapter, conversation_id):
    active_id = adapter.create_test_scenario(schemas.TestScenarioCreate(
        name="Book two children", category="functional", expected_outcome="booked",
    ))
    draft_id = adapter.create_test_scenario(schemas.TestScenarioCreate(
        name="Caller hangs up", category="edge-case", status="draft",
    ))

    assert [s.id for s in adapter.list_test_scenarios(status="active")] == [active_id]
    assert {s.id for s in adapter.list_test_scenarios()} == {active_id, draft_id}

    adapter.update_test_scenario(draft_id, schemas.TestScenarioUpdate(status="active"))
    assert adapter.get_test_scenario(draft_id).status == models.ScenarioStatus.active

    execution_id = adapter.create_test_execution(schemas.TestExecutionCreate(
        scenario_id=active_id, conversation_id=conversation_id, test_status="pass", actual_result="booked",
    ))
    execution = adapter.get_test_execution(execution_id)
    assert execution.test_status == models.TestStatus.passed
    assert [e.id for e in adapter.list_test_executions_by_scenario(active_id)] == [execution_id]
    assert [e.id for e in adapter.list_test_executions()] == [execution_id]

    adapter.delete_test_scenario(active_id)
    assert adapter.get_test_scenario(active_id) is None
    assert adapter.get_test_execution(execution_id) is None


# ==================== SKILL EXECUTION LOGS ====================

def test_skill_execution_logs(adapter, conversation_id):
    for step, name in enumerate(["lookup_patient", "check_availability", "book"], start=1):
        adapter.create_skill_execution_log(schemas.SkillExecutionLogCreate(
            conversation_id=conversation_id, skill_name="booking", step_number=step, step_name=name,
            execution_status="success" if step < 3 else "failure",
        ))
    adapter.create_skill_execution_log(schemas.SkillExecutionLogCreate(
        conversation_id=conversation_id, skill_name="reminder", step_number=1, step_name="send_sms",
        execution_status="skipped",
    ))

    steps = adapter.list_skill_executions_by_conversation(conversation_id)
    assert [log.step_name for log in steps if log.skill_name == "booking"] == [
        "lookup_patient", "check_availability", "book",
    ]
    assert len(adapter.list_skill_executions_by_skill("booking")) == 3
    assert len(adapter.list_skill_executions_by_skill("booking", limit=2)) == 2
    assert len(adapter.list_skill_executions()) == 4
