# voice_store/routers/database_api.py
import base64
from datetime import date as date_type, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from .. import models, schemas, demo_schemas
from ..adapters.base import DatabaseAdapter

router = APIRouter(
    tags=["Database"],
    responses={404: {"description": "Not found"}},
)

NO_CONTENT = status.HTTP_204_NO_CONTENT
CREATED = status.HTTP_201_CREATED


def get_adapter(request: Request) -> DatabaseAdapter:
    return request.app.state.adapter


def _found(entity, label: str):
    if entity is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return entity


def _jsonable_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: base64.b64encode(bytes(value)).decode("ascii") if isinstance(value, (bytes, bytearray, memoryview)) else value
        for key, value in row.items()
    }


# ==================== PATIENTS ====================

@router.get("/patients")
async def list_patients(limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
                        db: DatabaseAdapter = Depends(get_adapter)):
    return {"patients": db.list_patients(limit=limit, offset=offset)}

@router.get("/patients/phone/{phone_number}", response_model=schemas.Patient)
async def get_patient_by_phone(phone_number: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_patient_by_phone(phone_number), "Patient")

@router.get("/patients/{patient_id}", response_model=schemas.Patient)
async def get_patient(patient_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_patient(patient_id), "Patient")

@router.post("/patients", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_patient(patient: schemas.PatientCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_patient(patient)}

@router.put("/patients/{patient_id}", status_code=NO_CONTENT)
async def update_patient(patient_id: str, updates: schemas.PatientUpdate, db: DatabaseAdapter = Depends(get_adapter)):
    db.update_patient(patient_id, updates)

@router.delete("/patients/{patient_id}", status_code=NO_CONTENT)
async def delete_patient(patient_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_patient(patient_id)

@router.get("/patients/{patient_id}/children")
async def list_children(patient_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"children": db.list_children(patient_id)}

@router.post("/patients/{patient_id}/children", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_child(patient_id: str, child: schemas.ChildCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_child(patient_id, child)}

# ==================== CHILDREN ====================

@router.get("/children/{child_id}", response_model=schemas.Child)
async def get_child(child_id: int, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_child(child_id), "Child")

@router.put("/children/{child_id}", status_code=NO_CONTENT)
async def update_child(child_id: int, updates: schemas.ChildUpdate, db: DatabaseAdapter = Depends(get_adapter)):
    db.update_child(child_id, updates)

@router.delete("/children/{child_id}", status_code=NO_CONTENT)
async def delete_child(child_id: int, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_child(child_id)

# ==================== APPOINTMENTS ====================

@router.get("/appointments")
async def list_appointments(
    date: Optional[date_type] = None,
    status_filter: Optional[List[models.AppointmentStatus]] = Query(None, alias="status"),
    patient_id: Optional[str] = None,
    booking_id: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: DatabaseAdapter = Depends(get_adapter),
):
    filters = schemas.AppointmentFilters.model_validate({
        key: value for key, value in {
            "date": date, "status": status_filter, "patient_id": patient_id, "booking_id": booking_id,
            "from_date": from_date, "to_date": to_date, "limit": limit, "offset": offset,
        }.items() if value is not None
    })
    return {"appointments": db.list_appointments(filters)}

@router.get("/appointments/booking/{booking_id}", response_model=schemas.Appointment)
async def get_appointment_by_booking_id(booking_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_appointment_by_booking_id(booking_id), "Appointment")

@router.get("/appointments/{appointment_id}", response_model=schemas.Appointment)
async def get_appointment(appointment_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_appointment(appointment_id), "Appointment")

@router.post("/appointments", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_appointment(appointment: schemas.AppointmentCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_appointment(appointment)}

@router.put("/appointments/{appointment_id}", status_code=NO_CONTENT)
async def update_appointment(appointment_id: str, updates: schemas.AppointmentUpdate,
                             db: DatabaseAdapter = Depends(get_adapter)):
    db.update_appointment(appointment_id, updates)

@router.delete("/appointments/{appointment_id}", status_code=NO_CONTENT)
async def delete_appointment(appointment_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_appointment(appointment_id)

@router.post("/appointments/{appointment_id}/children", status_code=NO_CONTENT)
async def link_child(appointment_id: str, link: schemas.ChildLink, db: DatabaseAdapter = Depends(get_adapter)):
    db.link_child_to_appointment(appointment_id, link.child_id)

@router.get("/appointments/{appointment_id}/children")
async def get_appointment_children(appointment_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"children": db.get_appointment_children(appointment_id)}

# ==================== CONVERSATIONS ====================

@router.get("/conversations")
async def list_conversations(
    patient_id: Optional[str] = None,
    phone_number: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    outcome: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: DatabaseAdapter = Depends(get_adapter),
):
    filters = schemas.ConversationFilters.model_validate({
        key: value for key, value in {
            "patient_id": patient_id, "phone_number": phone_number, "from_date": from_date,
            "to_date": to_date, "outcome": outcome, "limit": limit, "offset": offset,
        }.items() if value is not None
    })
    return {"conversations": db.list_conversations(filters)}

@router.get("/conversations/{conversation_id}", response_model=schemas.Conversation)
async def get_conversation(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_conversation(conversation_id), "Conversation")

@router.post("/conversations", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_conversation(conversation: schemas.ConversationCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_conversation(conversation)}

@router.put("/conversations/{conversation_id}/end", status_code=NO_CONTENT)
async def end_conversation(conversation_id: str, end: schemas.ConversationEnd, db: DatabaseAdapter = Depends(get_adapter)):
    db.end_conversation(conversation_id, end)

@router.get("/conversations/{conversation_id}/turns")
async def get_conversation_history(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    turns = db.get_conversation_history(conversation_id)
    return {"turns": [schemas.ConversationTurnWire.from_turn(turn) for turn in turns]}

@router.get("/conversations/{conversation_id}/turns/count")
async def get_conversation_turn_count(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"count": db.get_conversation_turn_count(conversation_id)}

@router.post("/conversations/{conversation_id}/turns", status_code=CREATED, response_model=schemas.CreatedResponse)
async def log_conversation_turn(conversation_id: str, turn: schemas.ConversationTurnWire,
                                db: DatabaseAdapter = Depends(get_adapter)):
    if turn.conversation_id != conversation_id:
        raise HTTPException(status_code=422, detail="conversation_id in body does not match the URL")
    return {"id": db.log_conversation_turn(turn.to_create())}

@router.get("/conversations/{conversation_id}/function-calls")
async def get_function_calls(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"function_calls": db.get_function_calls(conversation_id)}

@router.get("/conversations/{conversation_id}/call-metrics", response_model=schemas.CallMetrics)
async def get_call_metrics_by_conversation(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_call_metrics_by_conversation(conversation_id), "Call metrics")

@router.get("/conversations/{conversation_id}/skill-executions")
async def list_skill_executions_by_conversation(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"executions": db.list_skill_executions_by_conversation(conversation_id)}

# ==================== FUNCTION CALLS ====================

@router.post("/function-calls", status_code=CREATED, response_model=schemas.CreatedResponse)
async def log_function_call(call: schemas.FunctionCallCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.log_function_call(call)}

@router.put("/function-calls/{call_id}/result", status_code=NO_CONTENT)
async def update_function_call_result(call_id: int, result: schemas.FunctionCallResult,
                                      db: DatabaseAdapter = Depends(get_adapter)):
    db.update_function_call_result(call_id, result)

@router.put("/function-calls/{call_id}/error", status_code=NO_CONTENT)
async def update_function_call_error(call_id: int, error: schemas.FunctionCallError,
                                     db: DatabaseAdapter = Depends(get_adapter)):
    db.update_function_call_error(call_id, error.error_message)

# ==================== AUDIT TRAIL ====================

@router.post("/audit", status_code=CREATED, response_model=schemas.CreatedResponse)
async def log_audit(record: schemas.AuditRecordCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.log_audit(record)}

@router.get("/audit/{table_name}/{record_id}")
async def get_audit_records(table_name: str, record_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"records": db.get_audit_records(table_name, record_id)}

# ==================== CALL METRICS ====================

@router.get("/call-metrics")
async def list_call_metrics(limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
                            db: DatabaseAdapter = Depends(get_adapter)):
    return {"metrics": db.list_call_metrics(limit=limit, offset=offset)}

@router.get("/call-metrics/{metrics_id}", response_model=schemas.CallMetrics)
async def get_call_metrics(metrics_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_call_metrics(metrics_id), "Call metrics")

@router.post("/call-metrics", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_call_metrics(metrics: schemas.CallMetricsCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_call_metrics(metrics)}

@router.put("/call-metrics/{metrics_id}", status_code=NO_CONTENT)
async def update_call_metrics(metrics_id: str, updates: schemas.CallMetricsUpdate,
                              db: DatabaseAdapter = Depends(get_adapter)):
    db.update_call_metrics(metrics_id, updates)

# ==================== TEST SCENARIOS / EXECUTIONS ====================

@router.get("/test-scenarios")
async def list_test_scenarios(status_filter: Optional[str] = Query(None, alias="status"),
                              limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
                              db: DatabaseAdapter = Depends(get_adapter)):
    return {"scenarios": db.list_test_scenarios(status=status_filter, limit=limit, offset=offset)}

@router.get("/test-scenarios/{scenario_id}", response_model=schemas.TestScenario)
async def get_test_scenario(scenario_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_test_scenario(scenario_id), "Test scenario")

@router.post("/test-scenarios", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_test_scenario(scenario: schemas.TestScenarioCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_test_scenario(scenario)}

@router.put("/test-scenarios/{scenario_id}", status_code=NO_CONTENT)
async def update_test_scenario(scenario_id: str, updates: schemas.TestScenarioUpdate,
                               db: DatabaseAdapter = Depends(get_adapter)):
    db.update_test_scenario(scenario_id, updates)

@router.delete("/test-scenarios/{scenario_id}", status_code=NO_CONTENT)
async def delete_test_scenario(scenario_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_test_scenario(scenario_id)

@router.get("/test-scenarios/{scenario_id}/executions")
async def list_test_executions_by_scenario(scenario_id: str, limit: int = Query(50, ge=1, le=1000),
                                           db: DatabaseAdapter = Depends(get_adapter)):
    return {"executions": db.list_test_executions_by_scenario(scenario_id, limit=limit)}

@router.get("/test-executions")
async def list_test_executions(limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
                               db: DatabaseAdapter = Depends(get_adapter)):
    return {"executions": db.list_test_executions(limit=limit, offset=offset)}

@router.get("/test-executions/{execution_id}", response_model=schemas.TestExecution)
async def get_test_execution(execution_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_test_execution(execution_id), "Test execution")

@router.post("/test-executions", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_test_execution(execution: schemas.TestExecutionCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_test_execution(execution)}

# ==================== SKILL EXECUTION LOGS ====================

@router.get("/skill-executions")
async def list_skill_executions(limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
                                db: DatabaseAdapter = Depends(get_adapter)):
    return {"executions": db.list_skill_executions(limit=limit, offset=offset)}

@router.post("/skill-executions", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_skill_execution_log(log: schemas.SkillExecutionLogCreate, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_skill_execution_log(log)}

@router.get("/skills/{skill_name}/executions")
async def list_skill_executions_by_skill(skill_name: str, limit: int = Query(50, ge=1, le=1000),
                                         db: DatabaseAdapter = Depends(get_adapter)):
    return {"executions": db.list_skill_executions_by_skill(skill_name, limit=limit)}

# ==================== DEMO CONFIGURATION STORAGE ====================

@router.get("/demo-configs")
async def list_demo_config_headers(db: DatabaseAdapter = Depends(get_adapter)):
    return {"demo_configs": db.list_demo_config_headers()}

@router.get("/demo-configs/slug/{slug}", response_model=demo_schemas.DemoConfigHeader)
async def get_demo_config_header_by_slug(slug: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_demo_config_header_by_slug(slug), "Demo config")

@router.get("/demo-configs/{config_id}", response_model=demo_schemas.DemoConfigHeader)
async def get_demo_config_header(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_demo_config_header(config_id), "Demo config")

@router.post("/demo-configs", status_code=CREATED, response_model=schemas.CreatedResponse)
async def create_demo_config_header(header: demo_schemas.DemoConfigHeader, db: DatabaseAdapter = Depends(get_adapter)):
    return {"id": db.create_demo_config_header(header)}

@router.put("/demo-configs/{config_id}", status_code=NO_CONTENT)
async def update_demo_config_header(config_id: str, updates: demo_schemas.DemoConfigHeaderUpdate,
                                    db: DatabaseAdapter = Depends(get_adapter)):
    db.update_demo_config_header(config_id, updates)

@router.delete("/demo-configs/{config_id}", status_code=NO_CONTENT)
async def delete_demo_config_header(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_demo_config_header(config_id)

@router.get("/demo-configs/{config_id}/business-profile", response_model=demo_schemas.BusinessProfile)
async def get_business_profile(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_business_profile(config_id), "Business profile")

@router.put("/demo-configs/{config_id}/business-profile", status_code=NO_CONTENT)
async def save_business_profile(config_id: str, profile: demo_schemas.BusinessProfile,
                                db: DatabaseAdapter = Depends(get_adapter)):
    db.save_business_profile(config_id, profile)

@router.get("/demo-configs/{config_id}/agent-config", response_model=demo_schemas.AgentConfig)
async def get_agent_config(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_agent_config(config_id), "Agent config")

@router.put("/demo-configs/{config_id}/agent-config", status_code=NO_CONTENT)
async def save_agent_config(config_id: str, agent: demo_schemas.AgentConfig, db: DatabaseAdapter = Depends(get_adapter)):
    db.save_agent_config(config_id, agent)

@router.get("/demo-configs/{config_id}/scenario", response_model=demo_schemas.ScenarioConfig)
async def get_scenario(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_scenario(config_id), "Scenario")

@router.put("/demo-configs/{config_id}/scenario", status_code=NO_CONTENT)
async def save_scenario(config_id: str, scenario: demo_schemas.ScenarioConfig, db: DatabaseAdapter = Depends(get_adapter)):
    db.save_scenario(config_id, scenario)

@router.get("/demo-configs/{config_id}/ui-labels", response_model=demo_schemas.UILabels)
async def get_ui_labels(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return _found(db.get_ui_labels(config_id), "UI labels")

@router.put("/demo-configs/{config_id}/ui-labels", status_code=NO_CONTENT)
async def save_ui_labels(config_id: str, labels: demo_schemas.UILabels, db: DatabaseAdapter = Depends(get_adapter)):
    db.save_ui_labels(config_id, labels)

@router.get("/demo-configs/{config_id}/tools")
async def list_tool_configs(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"tool_configs": db.list_tool_configs(config_id)}

@router.put("/demo-configs/{config_id}/tools", status_code=NO_CONTENT)
async def upsert_tool_config(config_id: str, tool: demo_schemas.ToolConfig, db: DatabaseAdapter = Depends(get_adapter)):
    db.upsert_tool_config(config_id, tool)

@router.delete("/demo-configs/{config_id}/tools/{tool_name}", status_code=NO_CONTENT)
async def delete_tool_config(config_id: str, tool_name: str, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_tool_config(config_id, tool_name)

@router.get("/demo-configs/{config_id}/sms-templates")
async def list_sms_templates(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"sms_templates": db.list_sms_templates(config_id)}

@router.put("/demo-configs/{config_id}/sms-templates", status_code=NO_CONTENT)
async def upsert_sms_template(config_id: str, template: demo_schemas.SMSTemplate,
                              db: DatabaseAdapter = Depends(get_adapter)):
    db.upsert_sms_template(config_id, template)

@router.delete("/demo-configs/{config_id}/sms-templates/{template_type}/{template_name}", status_code=NO_CONTENT)
async def delete_sms_template(config_id: str, template_type: str, template_name: str,
                              db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_sms_template(config_id, template_type, template_name)

@router.get("/demo-configs/{config_id}/mock-data-pools")
async def list_mock_data_pools(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"mock_data_pools": db.list_mock_data_pools(config_id)}

@router.put("/demo-configs/{config_id}/mock-data-pools", status_code=NO_CONTENT)
async def upsert_mock_data_pool(config_id: str, pool: demo_schemas.MockDataPool,
                                db: DatabaseAdapter = Depends(get_adapter)):
    db.upsert_mock_data_pool(config_id, pool)

@router.delete("/demo-configs/{config_id}/mock-data-pools/{pool_type}", status_code=NO_CONTENT)
async def delete_mock_data_pool(config_id: str, pool_type: str, db: DatabaseAdapter = Depends(get_adapter)):
    db.delete_mock_data_pool(config_id, pool_type)

# ==================== TRANSACTIONS ====================

@router.post("/transaction/begin", status_code=NO_CONTENT)
async def begin_transaction(db: DatabaseAdapter = Depends(get_adapter)):
    db.begin_transaction()

@router.post("/transaction/commit", status_code=NO_CONTENT)
async def commit_transaction(db: DatabaseAdapter = Depends(get_adapter)):
    db.commit()

@router.post("/transaction/rollback", status_code=NO_CONTENT)
async def rollback_transaction(db: DatabaseAdapter = Depends(get_adapter)):
    db.rollback()

# ==================== UTILITY ====================

@router.post("/query")
async def execute_raw_query(query: schemas.RawQuery, db: DatabaseAdapter = Depends(get_adapter)):
    result = db.execute_raw_query(query.sql, query.params)
    if isinstance(result, list):
        return {"rows": [_jsonable_row(row) for row in result]}
    return result

@router.get("/stats", response_model=schemas.DatabaseStats)
async def get_stats(db: DatabaseAdapter = Depends(get_adapter)):
    return db.get_stats()

@router.get("/export")
async def export_to_json(db: DatabaseAdapter = Depends(get_adapter)):
    return Response(content=db.export_to_json(), media_type="application/json")

@router.post("/import", status_code=NO_CONTENT)
async def import_from_json(request: Request, db: DatabaseAdapter = Depends(get_adapter)):
    # The body is the export document itself, passed through untouched
    document = (await request.body()).decode("utf-8", errors="replace")
    db.import_from_json(document)
