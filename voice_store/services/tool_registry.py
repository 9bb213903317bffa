# voice_store/services/tool_registry.py
"""Predefined tools a demo agent can be given.

New demo configurations start with one ToolConfig per entry here; the
``enabled`` flag decides which ones are switched on out of the box.
"""
from typing import Any, Dict, List

from ..demo_schemas import ToolConfig, ToolType


def _schema(properties: Dict[str, Any] = None, required: List[str] = None) -> Dict[str, Any]:
    return {"type": "object", "properties": properties or {}, "required": required or []}


def _string(description: str, **extra) -> Dict[str, Any]:
    return {"type": "string", "description": description, **extra}


PREDEFINED_TOOLS: Dict[str, Dict[str, Any]] = {
    # --- Appointment tools ---
    "check_availability": {
        "display_name": "Check Availability",
        "description": "Check available appointment slots for a specific date and time range",
        "enabled": True,
        "delay_ms": 300,
        "parameters": _schema(
            {
                "date": _string("Date to check (YYYY-MM-DD)"),
                "time_range": _string("Time preference", enum=["morning", "afternoon", "evening"]),
                "num_children": {"type": "number", "description": "Number of children to schedule"},
            },
            ["date", "time_range", "num_children"],
        ),
    },
    "book_appointment": {
        "display_name": "Book Appointment",
        "description": "Book an appointment for specified children",
        "enabled": True,
        "delay_ms": 400,
        "parameters": _schema(
            {
                "child_names": {"type": "array", "items": {"type": "string"}, "description": "Names of children"},
                "appointment_time": _string("ISO 8601 datetime"),
                "appointment_type": _string(
                    "Type of appointment", enum=["exam", "cleaning", "exam_and_cleaning", "emergency"]
                ),
            },
            ["child_names", "appointment_time", "appointment_type"],
        ),
    },
    "reschedule_appointment": {
        "display_name": "Reschedule Appointment",
        "description": "Reschedule an existing appointment to a new time",
        "enabled": False,
        "delay_ms": 400,
        "parameters": _schema(
            {
                "booking_id": _string("Existing booking ID"),
                "new_appointment_time": _string("New ISO 8601 datetime"),
                "reason": _string("Reason for rescheduling"),
            },
            ["booking_id", "new_appointment_time"],
        ),
    },
    "cancel_appointment": {
        "display_name": "Cancel Appointment",
        "description": "Cancel an existing appointment",
        "enabled": False,
        "delay_ms": 300,
        "parameters": _schema(
            {"booking_id": _string("Booking ID to cancel"), "reason": _string("Reason for cancellation")},
            ["booking_id"],
        ),
    },
    "get_appointment_history": {
        "display_name": "Get Appointment History",
        "description": "Retrieve past appointments for current patient",
        "enabled": False,
        "delay_ms": 200,
        "parameters": _schema(),
    },
    "add_appointment_notes": {
        "display_name": "Add Appointment Notes",
        "description": "Add notes to an existing appointment",
        "enabled": False,
        "delay_ms": 200,
        "parameters": _schema(
            {"booking_id": _string("Booking ID"), "notes": _string("Notes to add")},
            ["booking_id", "notes"],
        ),
    },
    # --- Patient tools ---
    "get_patient_info": {
        "display_name": "Get Patient Info",
        "description": "Retrieve patient information from the database",
        "enabled": True,
        "delay_ms": 200,
        "parameters": _schema({"phone_number": _string("Patient phone number")}, ["phone_number"]),
    },
    # --- Notification tools ---
    "send_confirmation_sms": {
        "display_name": "Send SMS Confirmation",
        "description": "Send appointment confirmation via SMS (requires explicit consent)",
        "enabled": True,
        "delay_ms": 500,
        "parameters": _schema(
            {
                "phone_number": _string("Phone number to send SMS to"),
                "appointment_details": _string("Appointment details to include"),
            },
            ["phone_number", "appointment_details"],
        ),
    },
    "send_appointment_reminder": {
        "display_name": "Send Appointment Reminder",
        "description": "Send a reminder SMS for upcoming appointment",
        "enabled": False,
        "delay_ms": 500,
        "parameters": _schema(
            {
                "phone_number": _string("Phone number"),
                "patient_name": _string("Patient name"),
                "child_name": _string("Child name"),
                "appointment_time": _string("Appointment time"),
                "location": _string("Location"),
            },
            ["phone_number", "patient_name", "child_name", "appointment_time", "location"],
        ),
    },
    # --- Clinic tools ---
    "check_insurance_eligibility": {
        "display_name": "Check Insurance Eligibility",
        "description": "Verify Medicaid/insurance coverage",
        "enabled": False,
        "delay_ms": 600,
        "parameters": _schema(
            {
                "medicaid_id": _string("Medicaid ID"),
                "child_name": _string("Child name"),
                "date_of_birth": _string("Date of birth"),
            },
            ["medicaid_id", "child_name", "date_of_birth"],
        ),
    },
    "get_clinic_hours": {
        "display_name": "Get Clinic Hours",
        "description": "Get clinic operating hours",
        "enabled": True,
        "delay_ms": 100,
        "parameters": _schema({"date": _string("Optional date (YYYY-MM-DD)")}),
    },
    "get_directions": {
        "display_name": "Get Directions",
        "description": "Get clinic location and directions",
        "enabled": True,
        "delay_ms": 200,
        "parameters": _schema({"from_address": _string("Starting address")}),
    },
    "get_available_services": {
        "display_name": "Get Available Services",
        "description": "List available dental services",
        "enabled": True,
        "delay_ms": 100,
        "parameters": _schema(),
    },
    "get_appointment_preparation": {
        "display_name": "Get Appointment Preparation",
        "description": "Get information on what to bring/prepare for appointment",
        "enabled": True,
        "delay_ms": 100,
        "parameters": _schema(),
    },
}


def is_predefined(tool_name: str) -> bool:
    return tool_name in PREDEFINED_TOOLS


def get_tool_config(tool_name: str) -> ToolConfig:
    """ToolConfig for one predefined tool; KeyError for an unknown name."""
    spec = PREDEFINED_TOOLS[tool_name]
    return ToolConfig(
        tool_name=tool_name,
        tool_type=ToolType.predefined,
        is_enabled=spec["enabled"],
        display_name=spec["display_name"],
        description=spec["description"],
        # copied so callers can edit the schema without touching the registry
        parameters_schema={
            **spec["parameters"],
            "properties": dict(spec["parameters"]["properties"]),
            "required": list(spec["parameters"]["required"]),
        },
        mock_response_delay_ms=spec["delay_ms"],
    )


def default_tool_configs() -> List[ToolConfig]:
    return [get_tool_config(name) for name in PREDEFINED_TOOLS]


def enabled_tool_names() -> List[str]:
    return [name for name, spec in PREDEFINED_TOOLS.items() if spec["enabled"]]
