# voice_store/schemas.py
import base64
import binascii
from datetime import datetime, date as date_type
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator

from .models import (
    AppointmentType, AppointmentStatus, CallDirection, Provider, TurnRole, ContentType,
    FunctionCallStatus, AuditOperation, CallOutcome, UserSatisfaction, ScenarioCategory,
    ScenarioStatus, TestStatus, SkillStepStatus,
)

# --- Base Schemas ---
class BaseSchema(BaseModel):
    class Config:
        from_attributes = True


class UpdateSchema(BaseModel):
    """Sparse update. Only fields the caller explicitly set are written."""

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    def is_empty(self) -> bool:
        return not self.model_fields_set


# --- Patient Schemas ---
class Address(BaseSchema):
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""


class AddressUpdate(UpdateSchema):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class ChildCreate(BaseSchema):
    name: str = Field(..., min_length=1)
    age: int = Field(..., ge=0, le=25)
    medicaid_id: str
    date_of_birth: Optional[str] = None
    special_needs: Optional[str] = None


class Child(ChildCreate):
    id: int
    patient_id: str
    created_at: Optional[datetime] = None


class ChildUpdate(UpdateSchema):
    name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=25)
    medicaid_id: Optional[str] = None
    date_of_birth: Optional[str] = None
    special_needs: Optional[str] = None


class PatientCreate(BaseSchema):
    id: Optional[str] = None
    phone_number: str = Field(..., min_length=1)
    parent_name: str = Field(..., min_length=1)
    address: Address = Field(default_factory=Address)
    preferred_language: str = "English"
    last_visit: Optional[str] = None
    notes: Optional[str] = None


class Patient(PatientCreate):
    id: str
    children: List[Child] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PatientUpdate(UpdateSchema):
    phone_number: Optional[str] = None
    parent_name: Optional[str] = None
    address: Optional[AddressUpdate] = None
    preferred_language: Optional[str] = None
    last_visit: Optional[str] = None
    notes: Optional[str] = None


# --- Appointment Schemas ---
class AppointmentCreate(BaseSchema):
    id: Optional[str] = None
    booking_id: Optional[str] = None
    patient_id: str
    appointment_time: datetime
    appointment_type: AppointmentType
    status: AppointmentStatus = AppointmentStatus.pending
    location: str
    confirmation_sent: bool = False
    confirmation_method: Optional[str] = None
    confirmation_sid: Optional[str] = None
    notes: Optional[str] = None
    child_count: int = Field(1, ge=0)


class Appointment(AppointmentCreate):
    id: str
    booking_id: str
    cancellation_reason: Optional[str] = None
    rescheduled: bool = False
    reschedule_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AppointmentUpdate(UpdateSchema):
    appointment_time: Optional[datetime] = None
    appointment_type: Optional[AppointmentType] = None
    status: Optional[AppointmentStatus] = None
    location: Optional[str] = None
    confirmation_sent: Optional[bool] = None
    confirmation_method: Optional[str] = None
    confirmation_sid: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rescheduled: Optional[bool] = None
    reschedule_reason: Optional[str] = None
    notes: Optional[str] = None
    child_count: Optional[int] = None


class AppointmentFilters(BaseModel):
    """Unset fields are not constraints."""
    date: Optional[date_type] = None
    status: Optional[List[AppointmentStatus]] = None
    patient_id: Optional[str] = None
    booking_id: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


# --- Conversation Schemas ---
class ConversationCreate(BaseSchema):
    id: Optional[str] = None
    patient_id: Optional[str] = None
    phone_number: str
    direction: CallDirection
    provider: Provider
    call_sid: Optional[str] = None
    started_at: datetime


class Conversation(ConversationCreate):
    id: str
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    outcome: Optional[str] = None
    outcome_details: Optional[str] = None


class ConversationEnd(BaseModel):
    ended_at: datetime
    duration_seconds: int = Field(..., ge=0)
    outcome: str
    outcome_details: Optional[str] = None


class ConversationFilters(BaseModel):
    patient_id: Optional[str] = None
    phone_number: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    outcome: Optional[str] = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class ConversationTurnCreate(BaseSchema):
    conversation_id: str
    turn_number: int = Field(..., ge=0)
    role: TurnRole
    content_type: ContentType
    content_text: Optional[str] = None
    audio_data: Optional[bytes] = None
    timestamp: datetime


class ConversationTurn(ConversationTurnCreate):
    id: int


# --- Function Call Schemas ---
class FunctionCallCreate(BaseSchema):
    conversation_id: str
    call_id: Optional[str] = None
    function_name: str
    arguments: str = "{}"
    status: FunctionCallStatus = FunctionCallStatus.pending
    timestamp: datetime


class FunctionCallLog(FunctionCallCreate):
    id: int
    result: Optional[str] = None
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


class FunctionCallResult(BaseModel):
    result: str
    status: FunctionCallStatus = FunctionCallStatus.success
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


# --- Audit Schemas ---
class AuditRecordCreate(BaseSchema):
    table_name: str
    record_id: str
    operation: AuditOperation
    field_name: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    changed_by: str = "system"
    change_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AuditRecord(AuditRecordCreate):
    id: int
    timestamp: Optional[datetime] = None


# --- Call Metrics Schemas ---
class CallMetricsCreate(BaseSchema):
    conversation_id: str
    call_duration_seconds: Optional[int] = None
    outcome: CallOutcome
    quality_score: Optional[int] = Field(None, ge=1, le=5)
    user_satisfaction: Optional[UserSatisfaction] = None
    interruptions_count: int = Field(0, ge=0)
    fallback_count: int = Field(0, ge=0)
    error_count: int = Field(0, ge=0)
    completion_rate: float = Field(0.0, ge=0.0, le=1.0)
    notes: Optional[str] = None


class CallMetrics(CallMetricsCreate):
    id: str
    created_at: Optional[datetime] = None


class CallMetricsUpdate(UpdateSchema):
    call_duration_seconds: Optional[int] = None
    outcome: Optional[CallOutcome] = None
    quality_score: Optional[int] = Field(None, ge=1, le=5)
    user_satisfaction: Optional[UserSatisfaction] = None
    interruptions_count: Optional[int] = None
    fallback_count: Optional[int] = None
    error_count: Optional[int] = None
    completion_rate: Optional[float] = Field(None, ge=0.0, le=1.0)
    notes: Optional[str] = None


# --- Test Scenario / Execution Schemas ---
class TestScenarioCreate(BaseSchema):
    __test__ = False

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: ScenarioCategory
    status: ScenarioStatus = ScenarioStatus.active
    expected_outcome: Optional[str] = None
    setup_script: Optional[str] = None
    validation_rules: Optional[str] = None


class TestScenario(TestScenarioCreate):
    __test__ = False

    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TestScenarioUpdate(UpdateSchema):
    __test__ = False

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ScenarioCategory] = None
    status: Optional[ScenarioStatus] = None
    expected_outcome: Optional[str] = None
    setup_script: Optional[str] = None
    validation_rules: Optional[str] = None


class TestExecutionCreate(BaseSchema):
    __test__ = False

    scenario_id: str
    conversation_id: Optional[str] = None
    test_status: TestStatus
    expected_result: Optional[str] = None
    actual_result: Optional[str] = None
    differences: Optional[str] = None
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


class TestExecution(TestExecutionCreate):
    __test__ = False

    id: str
    executed_at: Optional[datetime] = None


class TestRunRequest(BaseModel):
    """Outcome of one scenario run, as reported by the test harness."""
    __test__ = False

    actual_result: Any
    conversation_id: Optional[str] = None
    execution_time_ms: Optional[int] = Field(None, ge=0)


# --- Skill Execution Schemas ---
class SkillExecutionLogCreate(BaseSchema):
    conversation_id: str
    skill_name: str
    step_number: int = Field(..., ge=0)
    step_name: str
    tool_used: Optional[str] = None
    input_args: Optional[str] = None
    output_result: Optional[str] = None
    execution_status: SkillStepStatus
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None


class SkillExecutionLog(SkillExecutionLogCreate):
    id: str
    created_at: Optional[datetime] = None


# --- Utility Schemas ---
class DatabaseStats(BaseModel):
    patients: int = 0
    children: int = 0
    appointments: int = 0
    conversations: int = 0
    function_calls: int = 0
    call_metrics: int = 0
    test_scenarios: int = 0
    test_executions: int = 0
    skill_execution_logs: int = 0
    demo_configs: int = 0


class RawQuery(BaseModel):
    sql: str = Field(..., min_length=1)
    params: Optional[Any] = None

    @field_validator("params")
    @classmethod
    def validate_params(cls, v):
        if v is not None and not isinstance(v, (list, dict)):
            raise ValueError("params must be a list or an object")
        return v


class CreatedResponse(BaseModel):
    id: Any


class ErrorResponse(BaseModel):
    error: str


class ChildLink(BaseModel):
    child_id: int


class FunctionCallError(BaseModel):
    error_message: str


class HealthResponse(BaseModel):
    status: str
    backend: str
    schema_version: int
    stats: DatabaseStats



# --- Wire Schemas (audio travels as base64 text) ---
def encode_audio(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return base64.b64encode(data).decode("ascii")


def decode_audio(data: Optional[str]) -> Optional[bytes]:
    if data is None:
        return None
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"audio_data is not valid base64: {str(e)}")


class ConversationTurnWire(BaseModel):
    id: Optional[int] = None
    conversation_id: str
    turn_number: int = Field(..., ge=0)
    role: TurnRole
    content_type: ContentType
    content_text: Optional[str] = None
    audio_data: Optional[str] = None
    timestamp: datetime

    @field_validator("audio_data")
    @classmethod
    def validate_audio(cls, v):
        decode_audio(v)
        return v

    @classmethod
    def from_turn(cls, turn: ConversationTurnCreate) -> "ConversationTurnWire":
        data = turn.model_dump()
        data["audio_data"] = encode_audio(turn.audio_data)
        return cls(**data)

    def to_create(self) -> ConversationTurnCreate:
        data = self.model_dump(exclude={"id"})
        data["audio_data"] = decode_audio(self.audio_data)
        return ConversationTurnCreate(**data)

    def to_turn(self) -> ConversationTurn:
        data = self.model_dump()
        data["audio_data"] = decode_audio(self.audio_data)
        return ConversationTurn(**data)
