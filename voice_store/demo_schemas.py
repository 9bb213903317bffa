# voice_store/demo_schemas.py
"""Pydantic models for the demo configuration aggregate.

A DemoConfig is one logical object stored across a header table and seven
satellite tables. The models here are what callers see; the adapters only
ever hand them field dictionaries.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .schemas import Address, AddressUpdate, UpdateSchema

EXPORT_FORMAT_VERSION = 1

# --- Enum Classes ---
class VoiceName(str, Enum):
    alloy = "alloy"
    echo = "echo"
    fable = "fable"
    onyx = "onyx"
    nova = "nova"
    shimmer = "shimmer"
    Zephyr = "Zephyr"
    Puck = "Puck"
    Charon = "Charon"
    Kore = "Kore"
    Fenrir = "Fenrir"
    Aoede = "Aoede"

class ToolType(str, Enum):
    predefined = "predefined"
    custom = "custom"

class SMSTemplateType(str, Enum):
    confirmation = "confirmation"
    reminder = "reminder"
    cancellation = "cancellation"
    custom = "custom"

class MockDataPoolType(str, Enum):
    members = "members"
    facilities = "facilities"
    rides = "rides"
    drivers = "drivers"
    addresses = "addresses"
    patients = "patients"
    children = "children"
    appointments = "appointments"
    available_slots = "available_slots"


# --- Header ---
class DemoConfigHeader(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    is_active: bool = False
    is_default: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DemoConfigHeaderUpdate(UpdateSchema):
    slug: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


# --- Business Profile ---
class DayHours(BaseModel):
    open: str = "08:00"
    close: str = "17:00"
    closed: bool = False


def default_business_hours() -> Dict[str, DayHours]:
    weekday = {day: DayHours() for day in ("monday", "tuesday", "wednesday", "thursday", "friday")}
    weekend = {day: DayHours(open="", close="", closed=True) for day in ("saturday", "sunday")}
    return {**weekday, **weekend}


class BusinessProfile(BaseModel):
    organization_name: str = ""
    address: Address = Field(default_factory=Address)
    phone_number: str = ""
    logo_url: Optional[str] = None
    primary_color: str = "#3B82F6"
    secondary_color: str = "#6366F1"
    hours: Dict[str, DayHours] = Field(default_factory=default_business_hours)

    @field_validator("primary_color", "secondary_color")
    @classmethod
    def validate_color(cls, v):
        if not (v.startswith("#") and len(v) in (4, 7)):
            raise ValueError("Colors must be hex values like #3B82F6")
        return v


class BusinessProfileUpdate(UpdateSchema):
    organization_name: Optional[str] = None
    address: Optional[AddressUpdate] = None
    phone_number: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    hours: Optional[Dict[str, DayHours]] = None


# --- Agent Config ---
class ObjectionResponse(BaseModel):
    objection: str
    response: str


class AgentConfig(BaseModel):
    agent_name: str = "AI Agent"
    voice_name: VoiceName = VoiceName.alloy
    personality_description: Optional[str] = None
    system_prompt: str = ""
    opening_script: Optional[str] = None
    closing_script: Optional[str] = None
    objection_handling: List[ObjectionResponse] = Field(default_factory=list)


class AgentConfigUpdate(UpdateSchema):
    agent_name: Optional[str] = None
    voice_name: Optional[VoiceName] = None
    personality_description: Optional[str] = None
    system_prompt: Optional[str] = None
    opening_script: Optional[str] = None
    closing_script: Optional[str] = None
    objection_handling: Optional[List[ObjectionResponse]] = None


# --- Scenario ---
class DemoChild(BaseModel):
    name: str
    age: int
    medicaid_id: Optional[str] = None


class DemoPatientData(BaseModel):
    parent_name: str = ""
    phone_number: str = ""
    children: List[DemoChild] = Field(default_factory=list)
    address: Address = Field(default_factory=Address)
    preferred_language: str = "English"


class EdgeCase(BaseModel):
    scenario: str
    expected_behavior: str


class ScenarioConfig(BaseModel):
    call_direction: Literal["inbound", "outbound"] = "outbound"
    use_case: str = ""
    target_audience: Optional[str] = None
    demo_patient_data: DemoPatientData = Field(default_factory=DemoPatientData)
    key_talking_points: List[str] = Field(default_factory=list)
    edge_cases: List[EdgeCase] = Field(default_factory=list)


class ScenarioConfigUpdate(UpdateSchema):
    call_direction: Optional[Literal["inbound", "outbound"]] = None
    use_case: Optional[str] = None
    target_audience: Optional[str] = None
    demo_patient_data: Optional[DemoPatientData] = None
    key_talking_points: Optional[List[str]] = None
    edge_cases: Optional[List[EdgeCase]] = None


# --- Tool Configs ---
def empty_parameters_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


class ToolConfig(BaseModel):
    tool_name: str = Field(..., min_length=1)
    tool_type: ToolType = ToolType.predefined
    is_enabled: bool = False
    display_name: str = ""
    description: str = ""
    parameters_schema: Dict[str, Any] = Field(default_factory=empty_parameters_schema)
    mock_response_template: Optional[str] = None
    mock_response_delay_ms: int = Field(300, ge=0)

    @model_validator(mode="after")
    def default_display_name(self):
        if not self.display_name:
            self.display_name = self.tool_name
        return self


# --- SMS Templates ---
class SMSTemplate(BaseModel):
    template_type: SMSTemplateType = SMSTemplateType.confirmation
    template_name: str = Field(..., min_length=1)
    sender_name: str = "Demo Clinic"
    message_template: str = ""


# --- UI Labels ---
class UILabels(BaseModel):
    header_text: str = "Demo Clinic"
    header_badge: str = "(Enhanced)"
    footer_text: str = "Enhanced Demo"
    hero_title: str = "Proactive care for every family"
    hero_subtitle: Optional[str] = None
    user_speaker_label: str = "Caller"
    agent_speaker_label: str = "Agent"
    call_button_text: str = "Start Demo Call"
    end_call_button_text: str = "End Call"
    badge_text: str = "VOICE AI DEMO"


class UILabelsUpdate(UpdateSchema):
    header_text: Optional[str] = None
    header_badge: Optional[str] = None
    footer_text: Optional[str] = None
    hero_title: Optional[str] = None
    hero_subtitle: Optional[str] = None
    user_speaker_label: Optional[str] = None
    agent_speaker_label: Optional[str] = None
    call_button_text: Optional[str] = None
    end_call_button_text: Optional[str] = None
    badge_text: Optional[str] = None


# --- Mock Data Pools ---
class MockRecord(BaseModel):
    """Base for pool records. Unknown fields are kept as-is."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None


class NEMTMember(MockRecord):
    member_id: str
    first_name: str
    last_name: str
    date_of_birth: str
    phone: str
    address_street: str
    address_apartment: Optional[str] = None
    address_city: str
    address_state: str
    address_zip: str
    plan_type: Literal["Medicaid", "Medicare", "Dual"]
    eligibility_status: Literal["active", "inactive", "pending"]
    assistance_type: Literal["ambulatory", "wheelchair", "stretcher", "wheelchair_xl"]
    total_rides_allowed: int
    rides_used: int
    benefit_reset_date: Optional[str] = None
    notes: Optional[str] = None


class FacilityRecord(MockRecord):
    name: str
    address: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    facility_type: Optional[Literal["hospital", "clinic", "dialysis", "pharmacy", "imaging", "other"]] = None
    phone: Optional[str] = None


class RideBookingRecord(MockRecord):
    confirmation_number: str
    member_id: str
    status: Literal["confirmed", "pending", "completed", "cancelled", "in_progress"]
    trip_type: Literal["one_way", "round_trip"]
    pickup_date: str
    pickup_time: str
    pickup_address: str
    dropoff_address: str
    facility_name: Optional[str] = None
    appointment_time: Optional[str] = None
    driver_name: Optional[str] = None
    vehicle_info: Optional[str] = None
    eta: Optional[int] = None


class DriverRecord(MockRecord):
    name: str
    vehicle: str
    phone: Optional[str] = None
    vehicle_type: Optional[Literal["sedan", "suv", "wheelchair_van", "stretcher_van"]] = None


class AddressRecord(MockRecord):
    street: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    type: Optional[Literal["residential", "medical", "commercial"]] = None


class PatientRecord(MockRecord):
    patient_id: str
    parent_name: str
    phone: str
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    preferred_language: Optional[str] = None
    notes: Optional[str] = None


class ChildRecord(MockRecord):
    patient_id: Optional[str] = None
    name: str
    age: int
    medicaid_id: Optional[str] = None
    date_of_birth: Optional[str] = None
    special_needs: Optional[str] = None


class AppointmentRecord(MockRecord):
    booking_id: str
    patient_id: Optional[str] = None
    appointment_time: str
    appointment_type: Literal["exam", "cleaning", "exam_and_cleaning", "emergency"]
    status: Literal["pending", "confirmed", "completed", "cancelled"]
    location: Optional[str] = None
    child_names: Optional[List[str]] = None


class AvailableSlotRecord(MockRecord):
    date: str
    time: str
    datetime: Optional[str] = None
    available_chairs: Optional[int] = None
    time_range: Optional[Literal["morning", "afternoon", "evening"]] = None
    can_accommodate: Optional[bool] = None


POOL_RECORD_MODELS = {
    MockDataPoolType.members: NEMTMember,
    MockDataPoolType.facilities: FacilityRecord,
    MockDataPoolType.rides: RideBookingRecord,
    MockDataPoolType.drivers: DriverRecord,
    MockDataPoolType.addresses: AddressRecord,
    MockDataPoolType.patients: PatientRecord,
    MockDataPoolType.children: ChildRecord,
    MockDataPoolType.appointments: AppointmentRecord,
    MockDataPoolType.available_slots: AvailableSlotRecord,
}


class MockDataPool(BaseModel):
    pool_type: MockDataPoolType
    pool_name: Optional[str] = None
    description: Optional[str] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)
    record_schema: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_records(self):
        record_model = POOL_RECORD_MODELS[self.pool_type]
        for index, record in enumerate(self.records):
            try:
                record_model.model_validate(record)
            except ValueError as e:
                raise ValueError(f"{self.pool_type.value} record {index} is invalid: {e}")
        return self

    def typed_records(self) -> List[MockRecord]:
        record_model = POOL_RECORD_MODELS[self.pool_type]
        return [record_model.model_validate(record) for record in self.records]


# --- Aggregate ---
class DemoConfig(DemoConfigHeader):
    business_profile: BusinessProfile = Field(default_factory=BusinessProfile)
    agent_config: AgentConfig = Field(default_factory=AgentConfig)
    scenario: ScenarioConfig = Field(default_factory=ScenarioConfig)
    tool_configs: List[ToolConfig] = Field(default_factory=list)
    sms_templates: List[SMSTemplate] = Field(default_factory=list)
    ui_labels: UILabels = Field(default_factory=UILabels)
    mock_data_pools: List[MockDataPool] = Field(default_factory=list)


class DemoConfigCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    is_active: bool = False
    is_default: bool = False
    business_profile: Optional[BusinessProfile] = None
    agent_config: Optional[AgentConfig] = None
    scenario: Optional[ScenarioConfig] = None
    tool_configs: Optional[List[ToolConfig]] = None
    sms_templates: Optional[List[SMSTemplate]] = None
    ui_labels: Optional[UILabels] = None
    mock_data_pools: Optional[List[MockDataPool]] = None


class DemoConfigUpdate(UpdateSchema):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    is_default: Optional[bool] = None
    business_profile: Optional[BusinessProfileUpdate] = None
    agent_config: Optional[AgentConfigUpdate] = None
    scenario: Optional[ScenarioConfigUpdate] = None
    tool_configs: Optional[List[ToolConfig]] = None
    sms_templates: Optional[List[SMSTemplate]] = None
    ui_labels: Optional[UILabelsUpdate] = None
    mock_data_pools: Optional[List[MockDataPool]] = None


class DemoConfigDocumentHeader(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None


class DemoConfigDocument(BaseModel):
    """Single-aggregate export document."""
    version: int = Field(..., ge=1)
    exported_at: Optional[datetime] = None
    demo_config: DemoConfigDocumentHeader
    business_profile: Optional[BusinessProfile] = None
    agent_config: Optional[AgentConfig] = None
    scenario: Optional[ScenarioConfig] = None
    tool_configs: List[ToolConfig] = Field(default_factory=list)
    sms_templates: List[SMSTemplate] = Field(default_factory=list)
    ui_labels: Optional[UILabels] = None
    mock_data_pools: List[MockDataPool] = Field(default_factory=list)
