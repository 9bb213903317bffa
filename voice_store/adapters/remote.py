# voice_store/adapters/remote.py
import logging
from typing import Any, Dict, List, Optional, Sequence, Type, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from .. import schemas, demo_schemas
from ..errors import (
    StoreError, ConstraintViolationError, StoreValidationError, TransactionStateError, TransportError,
)
from .base import DatabaseAdapter

logger = logging.getLogger(__name__)

# error_type reported by the service takes precedence over the bare status code
ERROR_TYPES: Dict[str, Type[StoreError]] = {
    "ConstraintViolationError": ConstraintViolationError,
    "StoreValidationError": StoreValidationError,
    "RequestValidationError": StoreValidationError,
    "TransactionStateError": TransactionStateError,
    "StoreError": StoreError,
    "MalformedDataError": StoreError,
}

STATUS_ERRORS: Dict[int, Type[StoreError]] = {
    409: ConstraintViolationError,
    422: StoreValidationError,
}


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


def _params(**kwargs) -> Dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


def _body(model: BaseModel, sparse: bool = False) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude_unset=sparse)


class RemoteDatabaseAdapter(DatabaseAdapter):
    """Contract implementation that forwards every call to the database API service.

    One HTTP request per call and no retries. A 404 on a point lookup means
    "not found" and comes back as ``None``; any other failure is raised as the
    same ``StoreError`` subclass the embedded backend would raise, or as
    ``TransportError`` when the service could not be reached or answered with
    something unexpected.
    """

    backend_name = "remote"

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None,
                 timeout: float = 10.0, api_prefix: str = "/api/db"):
        if client is None and not base_url:
            raise ValueError("RemoteDatabaseAdapter needs a base_url or an httpx.Client")
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(base_url=base_url, timeout=timeout)
        # An injected client carries its own base url; paths are then prefixed here
        self._prefix = api_prefix.rstrip("/") if client is not None else ""

    # ==================== INTERNALS ====================

    def _request(self, method: str, path: str, entity: str, operation: str, *,
                 lookup: bool = False, **kwargs) -> Optional[httpx.Response]:
        try:
            response = self._client.request(method, f"{self._prefix}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Remote {operation} {entity} failed: {str(e)}")
            raise TransportError(f"Remote database unreachable: {str(e)}", entity=entity, operation=operation)

        if response.is_success:
            return response
        if lookup and response.status_code == 404:
            return None
        self._raise_for(response, entity, operation)

    def _raise_for(self, response: httpx.Response, entity: str, operation: str):
        message = response.reason_phrase or f"HTTP {response.status_code}"
        error_type = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or message
            error_type = body.get("error_type")

        error_class = ERROR_TYPES.get(error_type) or STATUS_ERRORS.get(response.status_code)
        if error_class is None:
            logger.error(f"Remote {operation} {entity} returned {response.status_code}: {message}")
            raise TransportError(message, status_code=response.status_code, entity=entity, operation=operation)
        logger.warning(f"Remote {operation} {entity} rejected ({response.status_code}): {message}")
        raise error_class(message, entity=entity, operation=operation)

    def _get_one(self, path: str, model, entity: str, **kwargs):
        response = self._request("GET", path, entity, "get", lookup=True, **kwargs)
        if response is None:
            return None
        return model.model_validate(response.json())

    def _get_list(self, path: str, key: str, model, entity: str, params: Optional[Dict[str, Any]] = None) -> list:
        response = self._request("GET", path, entity, "list", params=params)
        return [model.model_validate(item) for item in response.json()[key]]

    def _create(self, path: str, payload: Dict[str, Any], entity: str):
        response = self._request("POST", path, entity, "create", json=payload)
        return response.json()["id"]

    def _send(self, method: str, path: str, entity: str, operation: str, payload: Optional[Dict[str, Any]] = None):
        kwargs = {"json": payload} if payload is not None else {}
        self._request(method, path, entity, operation, **kwargs)

    def _update(self, path: str, updates: schemas.UpdateSchema, entity: str):
        if updates.is_empty():
            return
        self._send("PUT", path, entity, "update", _body(updates, sparse=True))

    # ==================== PATIENTS ====================

    def get_patient(self, patient_id: str) -> Optional[schemas.Patient]:
        return self._get_one(f"/patients/{_segment(patient_id)}", schemas.Patient, "patient")

    def get_patient_by_phone(self, phone_number: str) -> Optional[schemas.Patient]:
        return self._get_one(f"/patients/phone/{_segment(phone_number)}", schemas.Patient, "patient")

    def list_patients(self, limit: int = 100, offset: int = 0) -> List[schemas.Patient]:
        return self._get_list("/patients", "patients", schemas.Patient, "patient", _params(limit=limit, offset=offset))

    def create_patient(self, patient: schemas.PatientCreate) -> str:
        return self._create("/patients", _body(patient), "patient")

    def update_patient(self, patient_id: str, updates: schemas.PatientUpdate) -> None:
        self._update(f"/patients/{_segment(patient_id)}", updates, "patient")

    def delete_patient(self, patient_id: str) -> None:
        self._send("DELETE", f"/patients/{_segment(patient_id)}", "patient", "delete")

    # ==================== CHILDREN ====================

    def get_child(self, child_id: int) -> Optional[schemas.Child]:
        return self._get_one(f"/children/{child_id}", schemas.Child, "child")

    def list_children(self, patient_id: str) -> List[schemas.Child]:
        return self._get_list(f"/patients/{_segment(patient_id)}/children", "children", schemas.Child, "child")

    def create_child(self, patient_id: str, child: schemas.ChildCreate) -> int:
        return self._create(f"/patients/{_segment(patient_id)}/children", _body(child), "child")

    def update_child(self, child_id: int, updates: schemas.ChildUpdate) -> None:
        self._update(f"/children/{child_id}", updates, "child")

    def delete_child(self, child_id: int) -> None:
        self._send("DELETE", f"/children/{child_id}", "child", "delete")

    # ==================== APPOINTMENTS ====================

    def get_appointment(self, appointment_id: str) -> Optional[schemas.Appointment]:
        return self._get_one(f"/appointments/{_segment(appointment_id)}", schemas.Appointment, "appointment")

    def get_appointment_by_booking_id(self, booking_id: str) -> Optional[schemas.Appointment]:
        return self._get_one(f"/appointments/booking/{_segment(booking_id)}", schemas.Appointment, "appointment")

    def list_appointments(self, filters: Optional[schemas.AppointmentFilters] = None) -> List[schemas.Appointment]:
        filters = filters or schemas.AppointmentFilters()
        params = _params(**filters.model_dump(mode="json", exclude_none=True))
        return self._get_list("/appointments", "appointments", schemas.Appointment, "appointment", params)

    def create_appointment(self, appointment: schemas.AppointmentCreate) -> str:
        return self._create("/appointments", _body(appointment), "appointment")

    def update_appointment(self, appointment_id: str, updates: schemas.AppointmentUpdate) -> None:
        self._update(f"/appointments/{_segment(appointment_id)}", updates, "appointment")

    def delete_appointment(self, appointment_id: str) -> None:
        self._send("DELETE", f"/appointments/{_segment(appointment_id)}", "appointment", "delete")

    def link_child_to_appointment(self, appointment_id: str, child_id: int) -> None:
        self._send("POST", f"/appointments/{_segment(appointment_id)}/children", "appointment_child", "link",
                   {"child_id": child_id})

    def get_appointment_children(self, appointment_id: str) -> List[schemas.Child]:
        return self._get_list(f"/appointments/{_segment(appointment_id)}/children", "children", schemas.Child,
                              "appointment_child")

    # ==================== CONVERSATIONS ====================

    def get_conversation(self, conversation_id: str) -> Optional[schemas.Conversation]:
        return self._get_one(f"/conversations/{_segment(conversation_id)}", schemas.Conversation, "conversation")

    def list_conversations(self, filters: Optional[schemas.ConversationFilters] = None) -> List[schemas.Conversation]:
        filters = filters or schemas.ConversationFilters()
        params = _params(**filters.model_dump(mode="json", exclude_none=True))
        return self._get_list("/conversations", "conversations", schemas.Conversation, "conversation", params)

    def create_conversation(self, conversation: schemas.ConversationCreate) -> str:
        return self._create("/conversations", _body(conversation), "conversation")

    def end_conversation(self, conversation_id: str, end: schemas.ConversationEnd) -> None:
        self._send("PUT", f"/conversations/{_segment(conversation_id)}/end", "conversation", "end", _body(end))

    def log_conversation_turn(self, turn: schemas.ConversationTurnCreate) -> int:
        wire = schemas.ConversationTurnWire.from_turn(turn)
        return self._create(f"/conversations/{_segment(turn.conversation_id)}/turns",
                            wire.model_dump(mode="json", exclude={"id"}), "conversation_turn")

    def get_conversation_history(self, conversation_id: str) -> List[schemas.ConversationTurn]:
        wires = self._get_list(f"/conversations/{_segment(conversation_id)}/turns", "turns",
                               schemas.ConversationTurnWire, "conversation_turn")
        return [wire.to_turn() for wire in wires]

    def get_conversation_turn_count(self, conversation_id: str) -> int:
        response = self._request("GET", f"/conversations/{_segment(conversation_id)}/turns/count",
                                 "conversation_turn", "count")
        return response.json()["count"]

    # ==================== FUNCTION CALLS ====================

    def log_function_call(self, call: schemas.FunctionCallCreate) -> int:
        return self._create("/function-calls", _body(call), "function_call")

    def update_function_call_result(self, call_id: int, result: schemas.FunctionCallResult) -> None:
        self._send("PUT", f"/function-calls/{call_id}/result", "function_call", "update", _body(result))

    def update_function_call_error(self, call_id: int, error_message: str) -> None:
        self._send("PUT", f"/function-calls/{call_id}/error", "function_call", "update",
                   {"error_message": error_message})

    def get_function_calls(self, conversation_id: str) -> List[schemas.FunctionCallLog]:
        return self._get_list(f"/conversations/{_segment(conversation_id)}/function-calls", "function_calls",
                              schemas.FunctionCallLog, "function_call")

    # ==================== AUDIT TRAIL ====================

    def log_audit(self, record: schemas.AuditRecordCreate) -> int:
        return self._create("/audit", _body(record), "audit_trail")

    def get_audit_records(self, table_name: str, record_id: str) -> List[schemas.AuditRecord]:
        return self._get_list(f"/audit/{_segment(table_name)}/{_segment(record_id)}", "records",
                              schemas.AuditRecord, "audit_trail")

    # ==================== CALL METRICS ====================

    def create_call_metrics(self, metrics: schemas.CallMetricsCreate) -> str:
        return self._create("/call-metrics", _body(metrics), "call_metrics")

    def get_call_metrics(self, metrics_id: str) -> Optional[schemas.CallMetrics]:
        return self._get_one(f"/call-metrics/{_segment(metrics_id)}", schemas.CallMetrics, "call_metrics")

    def get_call_metrics_by_conversation(self, conversation_id: str) -> Optional[schemas.CallMetrics]:
        return self._get_one(f"/conversations/{_segment(conversation_id)}/call-metrics", schemas.CallMetrics,
                             "call_metrics")

    def update_call_metrics(self, metrics_id: str, updates: schemas.CallMetricsUpdate) -> None:
        self._update(f"/call-metrics/{_segment(metrics_id)}", updates, "call_metrics")

    def list_call_metrics(self, limit: int = 100, offset: int = 0) -> List[schemas.CallMetrics]:
        return self._get_list("/call-metrics", "metrics", schemas.CallMetrics, "call_metrics",
                              _params(limit=limit, offset=offset))

    # ==================== TEST SCENARIOS / EXECUTIONS ====================

    def create_test_scenario(self, scenario: schemas.TestScenarioCreate) -> str:
        return self._create("/test-scenarios", _body(scenario), "test_scenario")

    def get_test_scenario(self, scenario_id: str) -> Optional[schemas.TestScenario]:
        return self._get_one(f"/test-scenarios/{_segment(scenario_id)}", schemas.TestScenario, "test_scenario")

    def update_test_scenario(self, scenario_id: str, updates: schemas.TestScenarioUpdate) -> None:
        self._update(f"/test-scenarios/{_segment(scenario_id)}", updates, "test_scenario")

    def list_test_scenarios(self, status: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[schemas.TestScenario]:
        status = getattr(status, "value", status)
        return self._get_list("/test-scenarios", "scenarios", schemas.TestScenario, "test_scenario",
                              _params(status=status, limit=limit, offset=offset))

    def delete_test_scenario(self, scenario_id: str) -> None:
        self._send("DELETE", f"/test-scenarios/{_segment(scenario_id)}", "test_scenario", "delete")

    def create_test_execution(self, execution: schemas.TestExecutionCreate) -> str:
        return self._create("/test-executions", _body(execution), "test_execution")

    def get_test_execution(self, execution_id: str) -> Optional[schemas.TestExecution]:
        return self._get_one(f"/test-executions/{_segment(execution_id)}", schemas.TestExecution, "test_execution")

    def list_test_executions_by_scenario(self, scenario_id: str, limit: int = 50) -> List[schemas.TestExecution]:
        return self._get_list(f"/test-scenarios/{_segment(scenario_id)}/executions", "executions",
                              schemas.TestExecution, "test_execution", _params(limit=limit))

    def list_test_executions(self, limit: int = 100, offset: int = 0) -> List[schemas.TestExecution]:
        return self._get_list("/test-executions", "executions", schemas.TestExecution, "test_execution",
                              _params(limit=limit, offset=offset))

    # ==================== SKILL EXECUTION LOGS ====================

    def create_skill_execution_log(self, log: schemas.SkillExecutionLogCreate) -> str:
        return self._create("/skill-executions", _body(log), "skill_execution_log")

    def list_skill_executions_by_conversation(self, conversation_id: str) -> List[schemas.SkillExecutionLog]:
        return self._get_list(f"/conversations/{_segment(conversation_id)}/skill-executions", "executions",
                              schemas.SkillExecutionLog, "skill_execution_log")

    def list_skill_executions_by_skill(self, skill_name: str, limit: int = 50) -> List[schemas.SkillExecutionLog]:
        return self._get_list(f"/skills/{_segment(skill_name)}/executions", "executions",
                              schemas.SkillExecutionLog, "skill_execution_log", _params(limit=limit))

    def list_skill_executions(self, limit: int = 100, offset: int = 0) -> List[schemas.SkillExecutionLog]:
        return self._get_list("/skill-executions", "executions", schemas.SkillExecutionLog, "skill_execution_log",
                              _params(limit=limit, offset=offset))

    # ==================== DEMO CONFIGURATION STORAGE ====================

    def _config_path(self, config_id: str, suffix: str = "") -> str:
        return f"/demo-configs/{_segment(config_id)}{suffix}"

    def get_demo_config_header(self, config_id: str) -> Optional[demo_schemas.DemoConfigHeader]:
        return self._get_one(self._config_path(config_id), demo_schemas.DemoConfigHeader, "demo_config")

    def get_demo_config_header_by_slug(self, slug: str) -> Optional[demo_schemas.DemoConfigHeader]:
        return self._get_one(f"/demo-configs/slug/{_segment(slug)}", demo_schemas.DemoConfigHeader, "demo_config")

    def list_demo_config_headers(self) -> List[demo_schemas.DemoConfigHeader]:
        return self._get_list("/demo-configs", "demo_configs", demo_schemas.DemoConfigHeader, "demo_config")

    def create_demo_config_header(self, header: demo_schemas.DemoConfigHeader) -> str:
        return self._create("/demo-configs", _body(header), "demo_config")

    def update_demo_config_header(self, config_id: str, updates: demo_schemas.DemoConfigHeaderUpdate) -> None:
        self._update(self._config_path(config_id), updates, "demo_config")

    def delete_demo_config_header(self, config_id: str) -> None:
        self._send("DELETE", self._config_path(config_id), "demo_config", "delete")

    def get_business_profile(self, config_id: str) -> Optional[demo_schemas.BusinessProfile]:
        return self._get_one(self._config_path(config_id, "/business-profile"), demo_schemas.BusinessProfile,
                             "business_profile")

    def save_business_profile(self, config_id: str, profile: demo_schemas.BusinessProfile) -> None:
        self._send("PUT", self._config_path(config_id, "/business-profile"), "business_profile", "save",
                   _body(profile))

    def get_agent_config(self, config_id: str) -> Optional[demo_schemas.AgentConfig]:
        return self._get_one(self._config_path(config_id, "/agent-config"), demo_schemas.AgentConfig, "agent_config")

    def save_agent_config(self, config_id: str, agent: demo_schemas.AgentConfig) -> None:
        self._send("PUT", self._config_path(config_id, "/agent-config"), "agent_config", "save", _body(agent))

    def get_scenario(self, config_id: str) -> Optional[demo_schemas.ScenarioConfig]:
        return self._get_one(self._config_path(config_id, "/scenario"), demo_schemas.ScenarioConfig, "scenario")

    def save_scenario(self, config_id: str, scenario: demo_schemas.ScenarioConfig) -> None:
        self._send("PUT", self._config_path(config_id, "/scenario"), "scenario", "save", _body(scenario))

    def get_ui_labels(self, config_id: str) -> Optional[demo_schemas.UILabels]:
        return self._get_one(self._config_path(config_id, "/ui-labels"), demo_schemas.UILabels, "ui_labels")

    def save_ui_labels(self, config_id: str, labels: demo_schemas.UILabels) -> None:
        self._send("PUT", self._config_path(config_id, "/ui-labels"), "ui_labels", "save", _body(labels))

    def list_tool_configs(self, config_id: str) -> List[demo_schemas.ToolConfig]:
        return self._get_list(self._config_path(config_id, "/tools"), "tool_configs", demo_schemas.ToolConfig,
                              "tool_config")

    def upsert_tool_config(self, config_id: str, tool: demo_schemas.ToolConfig) -> None:
        self._send("PUT", self._config_path(config_id, "/tools"), "tool_config", "upsert", _body(tool))

    def delete_tool_config(self, config_id: str, tool_name: str) -> None:
        self._send("DELETE", self._config_path(config_id, f"/tools/{_segment(tool_name)}"), "tool_config", "delete")

    def list_sms_templates(self, config_id: str) -> List[demo_schemas.SMSTemplate]:
        return self._get_list(self._config_path(config_id, "/sms-templates"), "sms_templates",
                              demo_schemas.SMSTemplate, "sms_template")

    def upsert_sms_template(self, config_id: str, template: demo_schemas.SMSTemplate) -> None:
        self._send("PUT", self._config_path(config_id, "/sms-templates"), "sms_template", "upsert", _body(template))

    def delete_sms_template(self, config_id: str, template_type: str, template_name: str) -> None:
        template_type = getattr(template_type, "value", template_type)
        path = self._config_path(config_id, f"/sms-templates/{_segment(template_type)}/{_segment(template_name)}")
        self._send("DELETE", path, "sms_template", "delete")

    def list_mock_data_pools(self, config_id: str) -> List[demo_schemas.MockDataPool]:
        return self._get_list(self._config_path(config_id, "/mock-data-pools"), "mock_data_pools",
                              demo_schemas.MockDataPool, "mock_data_pool")

    def upsert_mock_data_pool(self, config_id: str, pool: demo_schemas.MockDataPool) -> None:
        self._send("PUT", self._config_path(config_id, "/mock-data-pools"), "mock_data_pool", "upsert", _body(pool))

    def delete_mock_data_pool(self, config_id: str, pool_type: str) -> None:
        pool_type = getattr(pool_type, "value", pool_type)
        self._send("DELETE", self._config_path(config_id, f"/mock-data-pools/{_segment(pool_type)}"),
                   "mock_data_pool", "delete")

    # ==================== TRANSACTIONS ====================
    # Transaction state lives in the service, shared by every client of it

    def begin_transaction(self) -> None:
        self._send("POST", "/transaction/begin", "transaction", "begin")

    def commit(self) -> None:
        self._send("POST", "/transaction/commit", "transaction", "commit")

    def rollback(self) -> None:
        self._send("POST", "/transaction/rollback", "transaction", "rollback")

    # ==================== UTILITY ====================

    def execute_raw_query(
        self, sql: str, params: Optional[Union[Sequence[Any], Dict[str, Any]]] = None
    ) -> Union[List[Dict[str, Any]], Dict[str, int]]:
        if params is not None and not isinstance(params, dict):
            params = list(params)
        response = self._request("POST", "/query", "query", "execute", json={"sql": sql, "params": params})
        result = response.json()
        if "rows" in result:
            return result["rows"]
        return result

    def get_stats(self) -> schemas.DatabaseStats:
        response = self._request("GET", "/stats", "database", "stats")
        return schemas.DatabaseStats.model_validate(response.json())

    def export_to_json(self) -> str:
        response = self._request("GET", "/export", "database", "export")
        return response.text

    def import_from_json(self, document: str) -> None:
        self._request("POST", "/import", "database", "import", content=document.encode("utf-8"),
                      headers={"Content-Type": "application/json"})

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
