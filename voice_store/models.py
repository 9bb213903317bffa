# voice_store/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Float,
    Boolean, LargeBinary, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base, LenientJSON
import enum

# Enum Classes, stored as plain strings and guarded by CHECK constraints
class AppointmentType(str, enum.Enum):
    exam = "exam"
    cleaning = "cleaning"
    exam_and_cleaning = "exam_and_cleaning"
    emergency = "emergency"

class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no-show"

class CallDirection(str, enum.Enum):
    inbound = "inbound"
    outbound = "outbound"

class Provider(str, enum.Enum):
    openai = "openai"
    gemini = "gemini"

class TurnRole(str, enum.Enum):
    user = "user"
    assistant = "assistant"
    system = "system"

class ContentType(str, enum.Enum):
    text = "text"
    audio = "audio"
    function_call = "function_call"
    function_result = "function_result"

class FunctionCallStatus(str, enum.Enum):
    pending = "pending"
    success = "success"
    error = "error"

class AuditOperation(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

class CallOutcome(str, enum.Enum):
    success = "success"
    partial = "partial"
    failure = "failure"
    abandoned = "abandoned"

class UserSatisfaction(str, enum.Enum):
    satisfied = "satisfied"
    neutral = "neutral"
    dissatisfied = "dissatisfied"

class ScenarioCategory(str, enum.Enum):
    functional = "functional"
    edge_case = "edge-case"
    regression = "regression"
    performance = "performance"

class ScenarioStatus(str, enum.Enum):
    active = "active"
    deprecated = "deprecated"
    draft = "draft"

class TestStatus(str, enum.Enum):
    passed = "pass"
    failed = "fail"
    error = "error"
    skipped = "skipped"

class SkillStepStatus(str, enum.Enum):
    success = "success"
    failure = "failure"
    skipped = "skipped"


def _check_in(column: str, enum_cls, name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


# ==================== OPERATIONAL TABLES ====================

class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        Index('idx_patients_phone', 'phone_number'),
    )

    id = Column(String, primary_key=True)
    phone_number = Column(String, unique=True, nullable=False)
    parent_name = Column(String, nullable=False)
    address_street = Column(String, nullable=False, default="")
    address_city = Column(String, nullable=False, default="")
    address_state = Column(String, nullable=False, default="")
    address_zip = Column(String, nullable=False, default="")
    preferred_language = Column(String, nullable=False, default="English")
    last_visit = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    children = relationship(
        "Child", back_populates="patient", cascade="all, delete-orphan",
        passive_deletes=True, order_by="Child.id",
    )


class Child(Base):
    __tablename__ = "children"
    __table_args__ = (
        Index('idx_children_patient', 'patient_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    age = Column(Integer, nullable=False)
    medicaid_id = Column(String, nullable=False)
    date_of_birth = Column(String, nullable=True)
    special_needs = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    patient = relationship("Patient", back_populates="children")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_patient', 'patient_id'),
        Index('idx_appointments_time', 'appointment_time'),
        Index('idx_appointments_status', 'status'),
        _check_in("appointment_type", AppointmentType, "ck_appointments_type"),
        _check_in("status", AppointmentStatus, "ck_appointments_status"),
    )

    id = Column(String, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False)
    patient_id = Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    appointment_time = Column(DateTime, nullable=False)
    appointment_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.pending.value)
    location = Column(String, nullable=False)
    confirmation_sent = Column(Boolean, nullable=False, default=False)
    confirmation_method = Column(String, nullable=True)
    confirmation_sid = Column(String, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    rescheduled = Column(Boolean, nullable=False, default=False)
    reschedule_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    child_count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class AppointmentChild(Base):
    __tablename__ = "appointment_children"

    appointment_id = Column(String, ForeignKey("appointments.id", ondelete="CASCADE"), primary_key=True)
    child_id = Column(Integer, ForeignKey("children.id", ondelete="CASCADE"), primary_key=True)


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index('idx_conversations_patient', 'patient_id'),
        Index('idx_conversations_phone', 'phone_number'),
        Index('idx_conversations_started', 'started_at'),
        _check_in("direction", CallDirection, "ck_conversations_direction"),
        _check_in("provider", Provider, "ck_conversations_provider"),
    )

    id = Column(String, primary_key=True)
    patient_id = Column(String, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True)
    phone_number = Column(String, nullable=False)
    direction = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    call_sid = Column(String, nullable=True)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    outcome = Column(String, nullable=True)
    outcome_details = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class ConversationTurn(Base):
    __tablename__ = "conversation_turns"
    __table_args__ = (
        Index('idx_turns_conversation', 'conversation_id', 'turn_number'),
        _check_in("role", TurnRole, "ck_turns_role"),
        _check_in("content_type", ContentType, "ck_turns_content_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    turn_number = Column(Integer, nullable=False)
    role = Column(String, nullable=False)
    content_type = Column(String, nullable=False)
    content_text = Column(Text, nullable=True)
    audio_data = Column(LargeBinary, nullable=True)
    timestamp = Column(DateTime, nullable=False)


class FunctionCall(Base):
    __tablename__ = "function_calls"
    __table_args__ = (
        Index('idx_function_calls_conversation', 'conversation_id'),
        _check_in("status", FunctionCallStatus, "ck_function_calls_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    call_id = Column(String, nullable=True)
    function_name = Column(String, nullable=False)
    arguments = Column(Text, nullable=False)
    result = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=FunctionCallStatus.pending.value)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False)


class AuditRecord(Base):
    """Append-only change log"""
    __tablename__ = "audit_trail"
    __table_args__ = (
        Index('idx_audit_table_record', 'table_name', 'record_id'),
        _check_in("operation", AuditOperation, "ck_audit_operation"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String, nullable=False)
    record_id = Column(String, nullable=False)
    operation = Column(String, nullable=False)
    field_name = Column(String, nullable=True)
    old_value = Column(LenientJSON, nullable=True)
    new_value = Column(LenientJSON, nullable=True)
    changed_by = Column(String, nullable=False)
    change_reason = Column(Text, nullable=True)
    metadata_json = Column("metadata", LenientJSON, nullable=True)
    timestamp = Column(DateTime, server_default=func.now())


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    version = Column(Integer, primary_key=True)
    applied_at = Column(DateTime, server_default=func.now())
    description = Column(Text, nullable=True)


# ==================== ANALYTICS TABLES ====================

class CallMetrics(Base):
    __tablename__ = "call_metrics"
    __table_args__ = (
        _check_in("outcome", CallOutcome, "ck_call_metrics_outcome"),
        CheckConstraint("quality_score IS NULL OR (quality_score >= 1 AND quality_score <= 5)", name="ck_call_metrics_quality"),
        CheckConstraint("completion_rate >= 0 AND completion_rate <= 1", name="ck_call_metrics_completion"),
    )

    id = Column(String, primary_key=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), unique=True, nullable=False)
    call_duration_seconds = Column(Integer, nullable=True)
    outcome = Column(String, nullable=False)
    quality_score = Column(Integer, nullable=True)
    user_satisfaction = Column(String, nullable=True)
    interruptions_count = Column(Integer, nullable=False, default=0)
    fallback_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    completion_rate = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class TestScenario(Base):
    __tablename__ = "test_scenarios"
    __table_args__ = (
        _check_in("category", ScenarioCategory, "ck_test_scenarios_category"),
        _check_in("status", ScenarioStatus, "ck_test_scenarios_status"),
    )

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False)
    status = Column(String, nullable=False, default=ScenarioStatus.active.value)
    expected_outcome = Column(Text, nullable=True)
    setup_script = Column(Text, nullable=True)
    validation_rules = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class TestExecution(Base):
    __tablename__ = "test_executions"
    __table_args__ = (
        Index('idx_test_executions_scenario', 'scenario_id'),
        _check_in("test_status", TestStatus, "ck_test_executions_status"),
    )

    id = Column(String, primary_key=True)
    scenario_id = Column(String, ForeignKey("test_scenarios.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    test_status = Column(String, nullable=False)
    expected_result = Column(Text, nullable=True)
    actual_result = Column(Text, nullable=True)
    differences = Column(Text, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    executed_at = Column(DateTime, server_default=func.now())


class SkillExecutionLog(Base):
    __tablename__ = "skill_execution_logs"
    __table_args__ = (
        Index('idx_skill_logs_conversation', 'conversation_id'),
        Index('idx_skill_logs_skill', 'skill_name'),
        _check_in("execution_status", SkillStepStatus, "ck_skill_logs_status"),
    )

    id = Column(String, primary_key=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    skill_name = Column(String, nullable=False)
    step_number = Column(Integer, nullable=False)
    step_name = Column(String, nullable=False)
    tool_used = Column(String, nullable=True)
    input_args = Column(Text, nullable=True)
    output_result = Column(Text, nullable=True)
    execution_status = Column(String, nullable=False)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


# ==================== DEMO CONFIGURATION AGGREGATE ====================

class DemoConfig(Base):
    """Header row of the demo configuration aggregate"""
    __tablename__ = "demo_configs"
    __table_args__ = (
        Index('idx_demo_configs_active', 'is_active'),
    )

    id = Column(String, primary_key=True)
    slug = Column(String(50), unique=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DemoBusinessProfile(Base):
    __tablename__ = "demo_business_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), unique=True, nullable=False)
    organization_name = Column(String, nullable=False, default="")
    address = Column(LenientJSON, nullable=True)
    phone_number = Column(String, nullable=False, default="")
    logo_url = Column(String, nullable=True)
    primary_color = Column(String, nullable=False, default="#3B82F6")
    secondary_color = Column(String, nullable=False, default="#6366F1")
    hours = Column(LenientJSON, nullable=True)


class DemoAgentConfig(Base):
    __tablename__ = "demo_agent_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), unique=True, nullable=False)
    agent_name = Column(String, nullable=False, default="AI Agent")
    voice_name = Column(String, nullable=False, default="alloy")
    personality_description = Column(Text, nullable=True)
    system_prompt = Column(Text, nullable=False, default="")
    opening_script = Column(Text, nullable=True)
    closing_script = Column(Text, nullable=True)
    objection_handling = Column(LenientJSON, nullable=True)


class DemoScenario(Base):
    __tablename__ = "demo_scenarios"
    __table_args__ = (
        CheckConstraint("call_direction IN ('inbound', 'outbound')", name="ck_demo_scenarios_direction"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), unique=True, nullable=False)
    call_direction = Column(String, nullable=False, default="outbound")
    use_case = Column(Text, nullable=False, default="")
    target_audience = Column(Text, nullable=True)
    demo_patient_data = Column(LenientJSON, nullable=True)
    key_talking_points = Column(LenientJSON, nullable=True)
    edge_cases = Column(LenientJSON, nullable=True)


class DemoUILabels(Base):
    __tablename__ = "demo_ui_labels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), unique=True, nullable=False)
    header_text = Column(String, nullable=False)
    header_badge = Column(String, nullable=False)
    footer_text = Column(String, nullable=False)
    hero_title = Column(String, nullable=False)
    hero_subtitle = Column(Text, nullable=True)
    user_speaker_label = Column(String, nullable=False)
    agent_speaker_label = Column(String, nullable=False)
    call_button_text = Column(String, nullable=False)
    end_call_button_text = Column(String, nullable=False)
    badge_text = Column(String, nullable=False)


class DemoToolConfig(Base):
    __tablename__ = "demo_tool_configs"
    __table_args__ = (
        UniqueConstraint('demo_config_id', 'tool_name', name='uq_demo_tool_configs_natural_key'),
        CheckConstraint("tool_type IN ('predefined', 'custom')", name="ck_demo_tool_configs_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), nullable=False)
    tool_name = Column(String, nullable=False)
    tool_type = Column(String, nullable=False, default="predefined")
    is_enabled = Column(Boolean, nullable=False, default=False)
    display_name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    parameters_schema = Column(LenientJSON, nullable=True)
    mock_response_template = Column(Text, nullable=True)
    mock_response_delay_ms = Column(Integer, nullable=False, default=300)


class DemoSMSTemplate(Base):
    __tablename__ = "demo_sms_templates"
    __table_args__ = (
        UniqueConstraint('demo_config_id', 'template_type', 'template_name', name='uq_demo_sms_templates_natural_key'),
        CheckConstraint(
            "template_type IN ('confirmation', 'reminder', 'cancellation', 'custom')",
            name="ck_demo_sms_templates_type",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), nullable=False)
    template_type = Column(String, nullable=False)
    template_name = Column(String, nullable=False)
    sender_name = Column(String, nullable=False, default="Demo Clinic")
    message_template = Column(Text, nullable=False, default="")


class DemoMockDataPool(Base):
    __tablename__ = "demo_mock_data_pools"
    __table_args__ = (
        UniqueConstraint('demo_config_id', 'pool_type', name='uq_demo_mock_data_pools_natural_key'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    demo_config_id = Column(String, ForeignKey("demo_configs.id", ondelete="CASCADE"), nullable=False)
    pool_type = Column(String, nullable=False)
    pool_name = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    records = Column(LenientJSON, nullable=True)
    record_schema = Column("schema", LenientJSON, key="record_schema", nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# Export/import and replace-all order (parents before children)
OPERATIONAL_TABLES = [
    ("patients", Patient),
    ("children", Child),
    ("appointments", Appointment),
    ("appointment_children", AppointmentChild),
    ("conversations", Conversation),
    ("conversation_turns", ConversationTurn),
    ("function_calls", FunctionCall),
    ("audit_trail", AuditRecord),
    ("call_metrics", CallMetrics),
    ("test_scenarios", TestScenario),
    ("test_executions", TestExecution),
    ("skill_execution_logs", SkillExecutionLog),
]
