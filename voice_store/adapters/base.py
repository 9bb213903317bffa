# voice_store/adapters/base.py
"""Data-access contract shared by every storage backend.

Callers hold one ``DatabaseAdapter`` chosen at startup and never branch on
which backend is behind it.

- Point lookups return ``None`` when nothing matches; they never raise for
  a missing row.
- List filters are pydantic models whose unset fields impose no constraint.
- Updates take ``*Update`` models; only explicitly set fields are written
  and an empty update is a no-op.
- Writes touching more than one table are only atomic when the caller wraps
  them in ``transaction()`` (or begin/commit/rollback).
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence, Union

from .. import schemas
from .. import demo_schemas


class DatabaseAdapter(ABC):

    backend_name = "abstract"

    # ==================== PATIENTS ====================

    @abstractmethod
    def get_patient(self, patient_id: str) -> Optional[schemas.Patient]: ...

    @abstractmethod
    def get_patient_by_phone(self, phone_number: str) -> Optional[schemas.Patient]: ...

    @abstractmethod
    def list_patients(self, limit: int = 100, offset: int = 0) -> List[schemas.Patient]: ...

    @abstractmethod
    def create_patient(self, patient: schemas.PatientCreate) -> str: ...

    @abstractmethod
    def update_patient(self, patient_id: str, updates: schemas.PatientUpdate) -> None: ...

    @abstractmethod
    def delete_patient(self, patient_id: str) -> None:
        """Removes the patient, its children, its appointments and their child links."""

    # ==================== CHILDREN ====================

    @abstractmethod
    def get_child(self, child_id: int) -> Optional[schemas.Child]: ...

    @abstractmethod
    def list_children(self, patient_id: str) -> List[schemas.Child]: ...

    @abstractmethod
    def create_child(self, patient_id: str, child: schemas.ChildCreate) -> int: ...

    @abstractmethod
    def update_child(self, child_id: int, updates: schemas.ChildUpdate) -> None: ...

    @abstractmethod
    def delete_child(self, child_id: int) -> None: ...

    # ==================== APPOINTMENTS ====================

    @abstractmethod
    def get_appointment(self, appointment_id: str) -> Optional[schemas.Appointment]: ...

    @abstractmethod
    def get_appointment_by_booking_id(self, booking_id: str) -> Optional[schemas.Appointment]: ...

    @abstractmethod
    def list_appointments(self, filters: Optional[schemas.AppointmentFilters] = None) -> List[schemas.Appointment]: ...

    @abstractmethod
    def create_appointment(self, appointment: schemas.AppointmentCreate) -> str: ...

    @abstractmethod
    def update_appointment(self, appointment_id: str, updates: schemas.AppointmentUpdate) -> None: ...

    @abstractmethod
    def delete_appointment(self, appointment_id: str) -> None: ...

    @abstractmethod
    def link_child_to_appointment(self, appointment_id: str, child_id: int) -> None: ...

    @abstractmethod
    def get_appointment_children(self, appointment_id: str) -> List[schemas.Child]: ...

    # ==================== CONVERSATIONS ====================

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[schemas.Conversation]: ...

    @abstractmethod
    def list_conversations(self, filters: Optional[schemas.ConversationFilters] = None) -> List[schemas.Conversation]: ...

    @abstractmethod
    def create_conversation(self, conversation: schemas.ConversationCreate) -> str: ...

    @abstractmethod
    def end_conversation(self, conversation_id: str, end: schemas.ConversationEnd) -> None: ...

    @abstractmethod
    def log_conversation_turn(self, turn: schemas.ConversationTurnCreate) -> int: ...

    @abstractmethod
    def get_conversation_history(self, conversation_id: str) -> List[schemas.ConversationTurn]: ...

    @abstractmethod
    def get_conversation_turn_count(self, conversation_id: str) -> int: ...

    # ==================== FUNCTION CALLS ====================

    @abstractmethod
    def log_function_call(self, call: schemas.FunctionCallCreate) -> int: ...

    @abstractmethod
    def update_function_call_result(self, call_id: int, result: schemas.FunctionCallResult) -> None: ...

    @abstractmethod
    def update_function_call_error(self, call_id: int, error_message: str) -> None: ...

    @abstractmethod
    def get_function_calls(self, conversation_id: str) -> List[schemas.FunctionCallLog]: ...

    # ==================== AUDIT TRAIL ====================

    @abstractmethod
    def log_audit(self, record: schemas.AuditRecordCreate) -> int: ...

    @abstractmethod
    def get_audit_records(self, table_name: str, record_id: str) -> List[schemas.AuditRecord]: ...

    # ==================== CALL METRICS ====================

    @abstractmethod
    def create_call_metrics(self, metrics: schemas.CallMetricsCreate) -> str: ...

    @abstractmethod
    def get_call_metrics(self, metrics_id: str) -> Optional[schemas.CallMetrics]: ...

    @abstractmethod
    def get_call_metrics_by_conversation(self, conversation_id: str) -> Optional[schemas.CallMetrics]: ...

    @abstractmethod
    def update_call_metrics(self, metrics_id: str, updates: schemas.CallMetricsUpdate) -> None: ...

    @abstractmethod
    def list_call_metrics(self, limit: int = 100, offset: int = 0) -> List[schemas.CallMetrics]: ...

    # ==================== TEST SCENARIOS / EXECUTIONS ====================

    @abstractmethod
    def create_test_scenario(self, scenario: schemas.TestScenarioCreate) -> str: ...

    @abstractmethod
    def get_test_scenario(self, scenario_id: str) -> Optional[schemas.TestScenario]: ...

    @abstractmethod
    def update_test_scenario(self, scenario_id: str, updates: schemas.TestScenarioUpdate) -> None: ...

    @abstractmethod
    def list_test_scenarios(self, status: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[schemas.TestScenario]: ...

    @abstractmethod
    def delete_test_scenario(self, scenario_id: str) -> None: ...

    @abstractmethod
    def create_test_execution(self, execution: schemas.TestExecutionCreate) -> str: ...

    @abstractmethod
    def get_test_execution(self, execution_id: str) -> Optional[schemas.TestExecution]: ...

    @abstractmethod
    def list_test_executions_by_scenario(self, scenario_id: str, limit: int = 50) -> List[schemas.TestExecution]: ...

    @abstractmethod
    def list_test_executions(self, limit: int = 100, offset: int = 0) -> List[schemas.TestExecution]: ...

    # ==================== SKILL EXECUTION LOGS ====================

    @abstractmethod
    def create_skill_execution_log(self, log: schemas.SkillExecutionLogCreate) -> str: ...

    @abstractmethod
    def list_skill_executions_by_conversation(self, conversation_id: str) -> List[schemas.SkillExecutionLog]: ...

    @abstractmethod
    def list_skill_executions_by_skill(self, skill_name: str, limit: int = 50) -> List[schemas.SkillExecutionLog]: ...

    @abstractmethod
    def list_skill_executions(self, limit: int = 100, offset: int = 0) -> List[schemas.SkillExecutionLog]: ...

    # ==================== DEMO CONFIGURATION STORAGE ====================
    # Row-level access for the configuration assembler. Nothing else should
    # write these tables directly.

    @abstractmethod
    def get_demo_config_header(self, config_id: str) -> Optional[demo_schemas.DemoConfigHeader]: ...

    @abstractmethod
    def get_demo_config_header_by_slug(self, slug: str) -> Optional[demo_schemas.DemoConfigHeader]: ...

    @abstractmethod
    def list_demo_config_headers(self) -> List[demo_schemas.DemoConfigHeader]:
        """Default configuration first, then by name."""

    @abstractmethod
    def create_demo_config_header(self, header: demo_schemas.DemoConfigHeader) -> str: ...

    @abstractmethod
    def update_demo_config_header(self, config_id: str, updates: demo_schemas.DemoConfigHeaderUpdate) -> None: ...

    @abstractmethod
    def delete_demo_config_header(self, config_id: str) -> None:
        """Cascades to every satellite row."""

    @abstractmethod
    def get_business_profile(self, config_id: str) -> Optional[demo_schemas.BusinessProfile]: ...

    @abstractmethod
    def save_business_profile(self, config_id: str, profile: demo_schemas.BusinessProfile) -> None: ...

    @abstractmethod
    def get_agent_config(self, config_id: str) -> Optional[demo_schemas.AgentConfig]: ...

    @abstractmethod
    def save_agent_config(self, config_id: str, agent: demo_schemas.AgentConfig) -> None: ...

    @abstractmethod
    def get_scenario(self, config_id: str) -> Optional[demo_schemas.ScenarioConfig]: ...

    @abstractmethod
    def save_scenario(self, config_id: str, scenario: demo_schemas.ScenarioConfig) -> None: ...

    @abstractmethod
    def get_ui_labels(self, config_id: str) -> Optional[demo_schemas.UILabels]: ...

    @abstractmethod
    def save_ui_labels(self, config_id: str, labels: demo_schemas.UILabels) -> None: ...

    @abstractmethod
    def list_tool_configs(self, config_id: str) -> List[demo_schemas.ToolConfig]: ...

    @abstractmethod
    def upsert_tool_config(self, config_id: str, tool: demo_schemas.ToolConfig) -> None:
        """Insert, or replace the row with the same tool name."""

    @abstractmethod
    def delete_tool_config(self, config_id: str, tool_name: str) -> None: ...

    @abstractmethod
    def list_sms_templates(self, config_id: str) -> List[demo_schemas.SMSTemplate]: ...

    @abstractmethod
    def upsert_sms_template(self, config_id: str, template: demo_schemas.SMSTemplate) -> None:
        """Insert, or replace the row with the same type and name."""

    @abstractmethod
    def delete_sms_template(self, config_id: str, template_type: str, template_name: str) -> None: ...

    @abstractmethod
    def list_mock_data_pools(self, config_id: str) -> List[demo_schemas.MockDataPool]: ...

    @abstractmethod
    def upsert_mock_data_pool(self, config_id: str, pool: demo_schemas.MockDataPool) -> None:
        """Insert, or replace the pool of the same type."""

    @abstractmethod
    def delete_mock_data_pool(self, config_id: str, pool_type: str) -> None: ...

    # ==================== TRANSACTIONS ====================

    @abstractmethod
    def begin_transaction(self) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    @contextmanager
    def transaction(self):
        """Run a block atomically: commit on success, roll back on any error."""
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    # ==================== UTILITY ====================

    @abstractmethod
    def execute_raw_query(
        self, sql: str, params: Optional[Union[Sequence[Any], Dict[str, Any]]] = None
    ) -> Union[List[Dict[str, Any]], Dict[str, int]]:
        """Administrative escape hatch. Row-returning statements give a list of
        dicts; anything else gives ``{"rowcount": n}``."""

    @abstractmethod
    def get_stats(self) -> schemas.DatabaseStats: ...

    @abstractmethod
    def export_to_json(self) -> str: ...

    @abstractmethod
    def import_from_json(self, document: str) -> None:
        """Replace every operational table with the document's rows, or change nothing."""

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
