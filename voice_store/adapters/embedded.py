# voice_store/adapters/embedded.py
import base64
import binascii
import enum
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import select, delete, insert, func, desc, Boolean, DateTime, LargeBinary
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session
from pydantic import ValidationError as PydanticValidationError

from .. import models, schemas, demo_schemas
from ..database import (
    SessionLocal, create_memory_engine, create_tables, load_image, dump_image, generate_id,
)
from ..errors import StoreError, ConstraintViolationError, StoreValidationError, TransactionStateError
from ..flush import DebouncedFlush
from .base import DatabaseAdapter

logger = logging.getLogger(__name__)

# Tables a whole-database export must contain
REQUIRED_EXPORT_KEYS = (
    "patients", "children", "appointments", "appointment_children", "conversations",
    "conversation_turns", "function_calls", "audit_trail",
)


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _columns(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _plain(value) for key, value in data.items()}


def _address_columns(address: Dict[str, Any]) -> Dict[str, Any]:
    return {f"address_{key}": value if value is not None else "" for key, value in address.items()}


def _satellite_fields(row, skip=("id", "demo_config_id")) -> Dict[str, Any]:
    # JSON columns that failed to decode come back as None; dropping them lets the model default apply
    fields = {}
    for column in row.__table__.columns:
        if column.key in skip:
            continue
        value = getattr(row, column.key)
        if value is not None:
            fields[column.key] = value
    return fields


class EmbeddedDatabaseAdapter(DatabaseAdapter):
    """Contract implementation over an in-process SQLite database.

    The whole store lives in memory. When ``image_path`` is given, the store is
    loaded from that file at startup and written back as one byte image by a
    debounced flush after committed writes; ``close()`` always performs the
    pending flush. Writes return as soon as the in-memory commit succeeds, so a
    crash between commit and flush loses that last burst of writes.
    """

    backend_name = "embedded"

    def __init__(self, image_path: Optional[str] = None, flush_delay: float = 5.0, echo: bool = False):
        self._lock = threading.RLock()
        self._engine = create_memory_engine(echo=echo)
        self._image_path = image_path
        if image_path:
            load_image(self._engine, image_path)
        create_tables(self._engine)
        self._session: Session = SessionLocal(bind=self._engine)
        self._in_transaction = False
        self._closed = False
        self._flusher = DebouncedFlush(self._flush_image, delay=flush_delay) if image_path else None

    # ==================== INTERNALS ====================

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @property
    def flusher(self) -> Optional[DebouncedFlush]:
        return self._flusher

    def _ensure_open(self):
        if self._closed:
            raise StoreError("Database adapter is closed")

    def _schedule_flush(self):
        if self._flusher is not None:
            self._flusher.schedule()

    def _flush_image(self) -> bool:
        with self._lock:
            if self._in_transaction:
                return False
            size = dump_image(self._engine, self._image_path)
        logger.debug(f"Database image flushed to {self._image_path} ({size} bytes)")
        return True

    @contextmanager
    def _read(self, entity: str, operation: str):
        with self._lock:
            self._ensure_open()
            try:
                yield self._session
                if not self._in_transaction:
                    self._session.commit()
            except SQLAlchemyError as e:
                if not self._in_transaction:
                    self._session.rollback()
                logger.error(f"Error during {operation} {entity}: {str(e)}")
                raise StoreError(f"Database error: {str(e)}", entity, operation)
            finally:
                self._session.expunge_all()

    @contextmanager
    def _write(self, entity: str, operation: str):
        """One contract write. Commits on its own outside a transaction; inside
        one, runs in a SAVEPOINT so a failure leaves the caller's transaction usable."""
        with self._lock:
            self._ensure_open()
            savepoint = self._session.begin_nested() if self._in_transaction else None
            try:
                yield self._session
                self._session.flush()
                if savepoint is not None:
                    savepoint.commit()
                else:
                    self._session.commit()
            except IntegrityError as e:
                self._undo(savepoint)
                logger.warning(f"Constraint violation during {operation} {entity}: {str(e.orig)}")
                raise ConstraintViolationError(str(e.orig), entity, operation)
            except SQLAlchemyError as e:
                self._undo(savepoint)
                logger.error(f"Error during {operation} {entity}: {str(e)}")
                raise StoreError(f"Database error: {str(e)}", entity, operation)
            except Exception:
                self._undo(savepoint)
                raise
            finally:
                self._session.expunge_all()
            committed = savepoint is None
        if committed:
            self._schedule_flush()

    def _undo(self, savepoint):
        if savepoint is not None:
            if savepoint.is_active:
                savepoint.rollback()
        else:
            self._session.rollback()

    def _require(self, row, entity: str, key: Any, operation: str = "update"):
        if row is None:
            raise StoreValidationError(f"{entity} '{key}' does not exist", entity, operation)
        return row

    @staticmethod
    def _apply(row, values: Dict[str, Any]):
        for key, value in values.items():
            setattr(row, key, value)

    # ==================== PATIENTS ====================

    def _patient_out(self, row: models.Patient) -> schemas.Patient:
        return schemas.Patient(
            id=row.id,
            phone_number=row.phone_number,
            parent_name=row.parent_name,
            address=schemas.Address(
                street=row.address_street, city=row.address_city,
                state=row.address_state, zip=row.address_zip,
            ),
            preferred_language=row.preferred_language,
            last_visit=row.last_visit,
            notes=row.notes,
            children=[schemas.Child.model_validate(child) for child in row.children],
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get_patient(self, patient_id: str) -> Optional[schemas.Patient]:
        with self._read("patient", "get") as db:
            row = db.get(models.Patient, patient_id)
            return self._patient_out(row) if row else None

    def get_patient_by_phone(self, phone_number: str) -> Optional[schemas.Patient]:
        with self._read("patient", "get") as db:
            row = db.execute(
                select(models.Patient).where(models.Patient.phone_number == phone_number)
            ).scalar_one_or_none()
            return self._patient_out(row) if row else None

    def list_patients(self, limit: int = 100, offset: int = 0) -> List[schemas.Patient]:
        with self._read("patient", "list") as db:
            rows = db.execute(
                select(models.Patient)
                .order_by(desc(models.Patient.created_at), models.Patient.id)
                .limit(limit).offset(offset)
            ).scalars().all()
            return [self._patient_out(row) for row in rows]

    def create_patient(self, patient: schemas.PatientCreate) -> str:
        patient_id = patient.id or generate_id("PAT")
        values = _columns(patient.model_dump(exclude={"id", "address"}))
        values.update(_address_columns(patient.address.model_dump()))
        with self._write("patient", "create") as db:
            db.add(models.Patient(id=patient_id, **values))
        return patient_id

    def update_patient(self, patient_id: str, updates: schemas.PatientUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        address = changes.pop("address", None) or {}
        values = _columns(changes)
        values.update(_address_columns(address))
        with self._write("patient", "update") as db:
            row = self._require(db.get(models.Patient, patient_id), "patient", patient_id)
            self._apply(row, values)

    def delete_patient(self, patient_id: str) -> None:
        with self._write("patient", "delete") as db:
            db.execute(delete(models.Patient).where(models.Patient.id == patient_id))

    # ==================== CHILDREN ====================

    def get_child(self, child_id: int) -> Optional[schemas.Child]:
        with self._read("child", "get") as db:
            row = db.get(models.Child, child_id)
            return schemas.Child.model_validate(row) if row else None

    def list_children(self, patient_id: str) -> List[schemas.Child]:
        with self._read("child", "list") as db:
            rows = db.execute(
                select(models.Child).where(models.Child.patient_id == patient_id).order_by(models.Child.id)
            ).scalars().all()
            return [schemas.Child.model_validate(row) for row in rows]

    def create_child(self, patient_id: str, child: schemas.ChildCreate) -> int:
        with self._write("child", "create") as db:
            row = models.Child(patient_id=patient_id, **_columns(child.model_dump()))
            db.add(row)
            db.flush()
            child_id = row.id
        return child_id

    def update_child(self, child_id: int, updates: schemas.ChildUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        with self._write("child", "update") as db:
            row = self._require(db.get(models.Child, child_id), "child", child_id)
            self._apply(row, _columns(changes))

    def delete_child(self, child_id: int) -> None:
        with self._write("child", "delete") as db:
            db.execute(delete(models.Child).where(models.Child.id == child_id))

    # ==================== APPOINTMENTS ====================

    def get_appointment(self, appointment_id: str) -> Optional[schemas.Appointment]:
        with self._read("appointment", "get") as db:
            row = db.get(models.Appointment, appointment_id)
            return schemas.Appointment.model_validate(row) if row else None

    def get_appointment_by_booking_id(self, booking_id: str) -> Optional[schemas.Appointment]:
        with self._read("appointment", "get") as db:
            row = db.execute(
                select(models.Appointment).where(models.Appointment.booking_id == booking_id)
            ).scalar_one_or_none()
            return schemas.Appointment.model_validate(row) if row else None

    def list_appointments(self, filters: Optional[schemas.AppointmentFilters] = None) -> List[schemas.Appointment]:
        filters = filters or schemas.AppointmentFilters()
        query = select(models.Appointment)
        if filters.date is not None:
            query = query.where(func.date(models.Appointment.appointment_time) == filters.date.isoformat())
        if filters.status:
            query = query.where(models.Appointment.status.in_([_plain(s) for s in filters.status]))
        if filters.patient_id is not None:
            query = query.where(models.Appointment.patient_id == filters.patient_id)
        if filters.booking_id is not None:
            query = query.where(models.Appointment.booking_id == filters.booking_id)
        if filters.from_date is not None:
            query = query.where(models.Appointment.appointment_time >= filters.from_date)
        if filters.to_date is not None:
            query = query.where(models.Appointment.appointment_time <= filters.to_date)
        query = query.order_by(models.Appointment.appointment_time, models.Appointment.id)
        with self._read("appointment", "list") as db:
            rows = db.execute(query.limit(filters.limit).offset(filters.offset)).scalars().all()
            return [schemas.Appointment.model_validate(row) for row in rows]

    def create_appointment(self, appointment: schemas.AppointmentCreate) -> str:
        appointment_id = appointment.id or generate_id("APT")
        values = _columns(appointment.model_dump(exclude={"id", "booking_id"}))
        values["booking_id"] = appointment.booking_id or generate_id("BK")
        with self._write("appointment", "create") as db:
            db.add(models.Appointment(id=appointment_id, **values))
        return appointment_id

    def update_appointment(self, appointment_id: str, updates: schemas.AppointmentUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        with self._write("appointment", "update") as db:
            row = self._require(db.get(models.Appointment, appointment_id), "appointment", appointment_id)
            self._apply(row, _columns(changes))

    def delete_appointment(self, appointment_id: str) -> None:
        with self._write("appointment", "delete") as db:
            db.execute(delete(models.Appointment).where(models.Appointment.id == appointment_id))

    def link_child_to_appointment(self, appointment_id: str, child_id: int) -> None:
        with self._write("appointment_child", "link") as db:
            if db.get(models.AppointmentChild, (appointment_id, child_id)) is None:
                db.add(models.AppointmentChild(appointment_id=appointment_id, child_id=child_id))

    def get_appointment_children(self, appointment_id: str) -> List[schemas.Child]:
        with self._read("appointment_child", "list") as db:
            rows = db.execute(
                select(models.Child)
                .join(models.AppointmentChild, models.AppointmentChild.child_id == models.Child.id)
                .where(models.AppointmentChild.appointment_id == appointment_id)
                .order_by(models.Child.id)
            ).scalars().all()
            return [schemas.Child.model_validate(row) for row in rows]

    # ==================== CONVERSATIONS ====================

    def get_conversation(self, conversation_id: str) -> Optional[schemas.Conversation]:
        with self._read("conversation", "get") as db:
            row = db.get(models.Conversation, conversation_id)
            return schemas.Conversation.model_validate(row) if row else None

    def list_conversations(self, filters: Optional[schemas.ConversationFilters] = None) -> List[schemas.Conversation]:
        filters = filters or schemas.ConversationFilters()
        query = select(models.Conversation)
        if filters.patient_id is not None:
            query = query.where(models.Conversation.patient_id == filters.patient_id)
        if filters.phone_number is not None:
            query = query.where(models.Conversation.phone_number == filters.phone_number)
        if filters.from_date is not None:
            query = query.where(models.Conversation.started_at >= filters.from_date)
        if filters.to_date is not None:
            query = query.where(models.Conversation.started_at <= filters.to_date)
        if filters.outcome is not None:
            query = query.where(models.Conversation.outcome == filters.outcome)
        query = query.order_by(desc(models.Conversation.started_at), models.Conversation.id)
        with self._read("conversation", "list") as db:
            rows = db.execute(query.limit(filters.limit).offset(filters.offset)).scalars().all()
            return [schemas.Conversation.model_validate(row) for row in rows]

    def create_conversation(self, conversation: schemas.ConversationCreate) -> str:
        conversation_id = conversation.id or generate_id("CONV")
        with self._write("conversation", "create") as db:
            db.add(models.Conversation(id=conversation_id, **_columns(conversation.model_dump(exclude={"id"}))))
        return conversation_id

    def end_conversation(self, conversation_id: str, end: schemas.ConversationEnd) -> None:
        with self._write("conversation", "end") as db:
            row = self._require(db.get(models.Conversation, conversation_id), "conversation", conversation_id, "end")
            self._apply(row, _columns(end.model_dump()))

    def log_conversation_turn(self, turn: schemas.ConversationTurnCreate) -> int:
        with self._write("conversation_turn", "create") as db:
            row = models.ConversationTurn(**_columns(turn.model_dump()))
            db.add(row)
            db.flush()
            turn_id = row.id
        return turn_id

    def get_conversation_history(self, conversation_id: str) -> List[schemas.ConversationTurn]:
        with self._read("conversation_turn", "list") as db:
            rows = db.execute(
                select(models.ConversationTurn)
                .where(models.ConversationTurn.conversation_id == conversation_id)
                .order_by(models.ConversationTurn.turn_number, models.ConversationTurn.id)
            ).scalars().all()
            return [schemas.ConversationTurn.model_validate(row) for row in rows]

    def get_conversation_turn_count(self, conversation_id: str) -> int:
        with self._read("conversation_turn", "count") as db:
            return db.execute(
                select(func.count()).select_from(models.ConversationTurn)
                .where(models.ConversationTurn.conversation_id == conversation_id)
            ).scalar_one()

    # ==================== FUNCTION CALLS ====================

    def log_function_call(self, call: schemas.FunctionCallCreate) -> int:
        with self._write("function_call", "create") as db:
            row = models.FunctionCall(**_columns(call.model_dump()))
            db.add(row)
            db.flush()
            call_id = row.id
        return call_id

    def update_function_call_result(self, call_id: int, result: schemas.FunctionCallResult) -> None:
        with self._write("function_call", "update") as db:
            row = self._require(db.get(models.FunctionCall, call_id), "function_call", call_id)
            self._apply(row, _columns(result.model_dump()))

    def update_function_call_error(self, call_id: int, error_message: str) -> None:
        with self._write("function_call", "update") as db:
            row = self._require(db.get(models.FunctionCall, call_id), "function_call", call_id)
            row.status = models.FunctionCallStatus.error.value
            row.error_message = error_message

    def get_function_calls(self, conversation_id: str) -> List[schemas.FunctionCallLog]:
        with self._read("function_call", "list") as db:
            rows = db.execute(
                select(models.FunctionCall)
                .where(models.FunctionCall.conversation_id == conversation_id)
                .order_by(models.FunctionCall.timestamp, models.FunctionCall.id)
            ).scalars().all()
            return [schemas.FunctionCallLog.model_validate(row) for row in rows]

    # ==================== AUDIT TRAIL ====================

    def log_audit(self, record: schemas.AuditRecordCreate) -> int:
        values = _columns(record.model_dump(exclude={"metadata"}))
        with self._write("audit_trail", "create") as db:
            row = models.AuditRecord(metadata_json=record.metadata, **values)
            db.add(row)
            db.flush()
            audit_id = row.id
        return audit_id

    def get_audit_records(self, table_name: str, record_id: str) -> List[schemas.AuditRecord]:
        with self._read("audit_trail", "list") as db:
            rows = db.execute(
                select(models.AuditRecord)
                .where(models.AuditRecord.table_name == table_name, models.AuditRecord.record_id == record_id)
                .order_by(desc(models.AuditRecord.id))
            ).scalars().all()
            return [
                schemas.AuditRecord(
                    id=row.id, table_name=row.table_name, record_id=row.record_id,
                    operation=row.operation, field_name=row.field_name,
                    old_value=row.old_value, new_value=row.new_value,
                    changed_by=row.changed_by, change_reason=row.change_reason,
                    metadata=row.metadata_json if isinstance(row.metadata_json, dict) else None,
                    timestamp=row.timestamp,
                )
                for row in rows
            ]

    # ==================== CALL METRICS ====================

    def create_call_metrics(self, metrics: schemas.CallMetricsCreate) -> str:
        metrics_id = generate_id("CM")
        with self._write("call_metrics", "create") as db:
            db.add(models.CallMetrics(id=metrics_id, **_columns(metrics.model_dump())))
        return metrics_id

    def get_call_metrics(self, metrics_id: str) -> Optional[schemas.CallMetrics]:
        with self._read("call_metrics", "get") as db:
            row = db.get(models.CallMetrics, metrics_id)
            return schemas.CallMetrics.model_validate(row) if row else None

    def get_call_metrics_by_conversation(self, conversation_id: str) -> Optional[schemas.CallMetrics]:
        with self._read("call_metrics", "get") as db:
            row = db.execute(
                select(models.CallMetrics).where(models.CallMetrics.conversation_id == conversation_id)
            ).scalar_one_or_none()
            return schemas.CallMetrics.model_validate(row) if row else None

    def update_call_metrics(self, metrics_id: str, updates: schemas.CallMetricsUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        with self._write("call_metrics", "update") as db:
            row = self._require(db.get(models.CallMetrics, metrics_id), "call_metrics", metrics_id)
            self._apply(row, _columns(changes))

    def list_call_metrics(self, limit: int = 100, offset: int = 0) -> List[schemas.CallMetrics]:
        with self._read("call_metrics", "list") as db:
            rows = db.execute(
                select(models.CallMetrics)
                .order_by(desc(models.CallMetrics.created_at), models.CallMetrics.id)
                .limit(limit).offset(offset)
            ).scalars().all()
            return [schemas.CallMetrics.model_validate(row) for row in rows]

    # ==================== TEST SCENARIOS / EXECUTIONS ====================

    def create_test_scenario(self, scenario: schemas.TestScenarioCreate) -> str:
        scenario_id = generate_id("TS")
        with self._write("test_scenario", "create") as db:
            db.add(models.TestScenario(id=scenario_id, **_columns(scenario.model_dump())))
        return scenario_id

    def get_test_scenario(self, scenario_id: str) -> Optional[schemas.TestScenario]:
        with self._read("test_scenario", "get") as db:
            row = db.get(models.TestScenario, scenario_id)
            return schemas.TestScenario.model_validate(row) if row else None

    def update_test_scenario(self, scenario_id: str, updates: schemas.TestScenarioUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        with self._write("test_scenario", "update") as db:
            row = self._require(db.get(models.TestScenario, scenario_id), "test_scenario", scenario_id)
            self._apply(row, _columns(changes))

    def list_test_scenarios(self, status: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[schemas.TestScenario]:
        query = select(models.TestScenario)
        if status is not None:
            query = query.where(models.TestScenario.status == _plain(status))
        query = query.order_by(desc(models.TestScenario.created_at), models.TestScenario.name)
        with self._read("test_scenario", "list") as db:
            rows = db.execute(query.limit(limit).offset(offset)).scalars().all()
            return [schemas.TestScenario.model_validate(row) for row in rows]

    def delete_test_scenario(self, scenario_id: str) -> None:
        with self._write("test_scenario", "delete") as db:
            db.execute(delete(models.TestScenario).where(models.TestScenario.id == scenario_id))

    def create_test_execution(self, execution: schemas.TestExecutionCreate) -> str:
        execution_id = generate_id("TE")
        with self._write("test_execution", "create") as db:
            db.add(models.TestExecution(id=execution_id, **_columns(execution.model_dump())))
        return execution_id

    def get_test_execution(self, execution_id: str) -> Optional[schemas.TestExecution]:
        with self._read("test_execution", "get") as db:
            row = db.get(models.TestExecution, execution_id)
            return schemas.TestExecution.model_validate(row) if row else None

    def list_test_executions_by_scenario(self, scenario_id: str, limit: int = 50) -> List[schemas.TestExecution]:
        with self._read("test_execution", "list") as db:
            rows = db.execute(
                select(models.TestExecution)
                .where(models.TestExecution.scenario_id == scenario_id)
                .order_by(desc(models.TestExecution.executed_at), models.TestExecution.id)
                .limit(limit)
            ).scalars().all()
            return [schemas.TestExecution.model_validate(row) for row in rows]

    def list_test_executions(self, limit: int = 100, offset: int = 0) -> List[schemas.TestExecution]:
        with self._read("test_execution", "list") as db:
            rows = db.execute(
                select(models.TestExecution)
                .order_by(desc(models.TestExecution.executed_at), models.TestExecution.id)
                .limit(limit).offset(offset)
            ).scalars().all()
            return [schemas.TestExecution.model_validate(row) for row in rows]

    # ==================== SKILL EXECUTION LOGS ====================

    def create_skill_execution_log(self, log: schemas.SkillExecutionLogCreate) -> str:
        log_id = generate_id("SKL")
        with self._write("skill_execution_log", "create") as db:
            db.add(models.SkillExecutionLog(id=log_id, **_columns(log.model_dump())))
        return log_id

    def list_skill_executions_by_conversation(self, conversation_id: str) -> List[schemas.SkillExecutionLog]:
        with self._read("skill_execution_log", "list") as db:
            rows = db.execute(
                select(models.SkillExecutionLog)
                .where(models.SkillExecutionLog.conversation_id == conversation_id)
                .order_by(models.SkillExecutionLog.step_number, models.SkillExecutionLog.created_at)
            ).scalars().all()
            return [schemas.SkillExecutionLog.model_validate(row) for row in rows]

    def list_skill_executions_by_skill(self, skill_name: str, limit: int = 50) -> List[schemas.SkillExecutionLog]:
        with self._read("skill_execution_log", "list") as db:
            rows = db.execute(
                select(models.SkillExecutionLog)
                .where(models.SkillExecutionLog.skill_name == skill_name)
                .order_by(desc(models.SkillExecutionLog.created_at), models.SkillExecutionLog.step_number)
                .limit(limit)
            ).scalars().all()
            return [schemas.SkillExecutionLog.model_validate(row) for row in rows]

    def list_skill_executions(self, limit: int = 100, offset: int = 0) -> List[schemas.SkillExecutionLog]:
        with self._read("skill_execution_log", "list") as db:
            rows = db.execute(
                select(models.SkillExecutionLog)
                .order_by(desc(models.SkillExecutionLog.created_at), models.SkillExecutionLog.id)
                .limit(limit).offset(offset)
            ).scalars().all()
            return [schemas.SkillExecutionLog.model_validate(row) for row in rows]

    # ==================== DEMO CONFIGURATION STORAGE ====================

    def get_demo_config_header(self, config_id: str) -> Optional[demo_schemas.DemoConfigHeader]:
        with self._read("demo_config", "get") as db:
            row = db.get(models.DemoConfig, config_id)
            return demo_schemas.DemoConfigHeader.model_validate(row) if row else None

    def get_demo_config_header_by_slug(self, slug: str) -> Optional[demo_schemas.DemoConfigHeader]:
        with self._read("demo_config", "get") as db:
            row = db.execute(select(models.DemoConfig).where(models.DemoConfig.slug == slug)).scalar_one_or_none()
            return demo_schemas.DemoConfigHeader.model_validate(row) if row else None

    def list_demo_config_headers(self) -> List[demo_schemas.DemoConfigHeader]:
        with self._read("demo_config", "list") as db:
            rows = db.execute(
                select(models.DemoConfig).order_by(desc(models.DemoConfig.is_default), models.DemoConfig.name)
            ).scalars().all()
            return [demo_schemas.DemoConfigHeader.model_validate(row) for row in rows]

    def create_demo_config_header(self, header: demo_schemas.DemoConfigHeader) -> str:
        values = header.model_dump(exclude={"created_at", "updated_at"})
        with self._write("demo_config", "create") as db:
            db.add(models.DemoConfig(**values))
        return header.id

    def update_demo_config_header(self, config_id: str, updates: demo_schemas.DemoConfigHeaderUpdate) -> None:
        changes = updates.changes()
        if not changes:
            return
        with self._write("demo_config", "update") as db:
            row = self._require(db.get(models.DemoConfig, config_id), "demo_config", config_id)
            self._apply(row, changes)

    def delete_demo_config_header(self, config_id: str) -> None:
        with self._write("demo_config", "delete") as db:
            db.execute(delete(models.DemoConfig).where(models.DemoConfig.id == config_id))

    def _get_one(self, model, schema, config_id: str, entity: str):
        with self._read(entity, "get") as db:
            row = db.execute(select(model).where(model.demo_config_id == config_id)).scalar_one_or_none()
            if row is None:
                return None
            return self._validate_satellite(schema, _satellite_fields(row), entity)

    def _save_one(self, model, config_id: str, payload, entity: str) -> None:
        values = payload.model_dump(mode="json")
        with self._write(entity, "save") as db:
            row = db.execute(select(model).where(model.demo_config_id == config_id)).scalar_one_or_none()
            if row is None:
                db.add(model(demo_config_id=config_id, **values))
            else:
                self._apply(row, values)

    def _validate_satellite(self, schema, fields: Dict[str, Any], entity: str):
        try:
            return schema.model_validate(fields)
        except PydanticValidationError as e:
            # A legacy row no longer matches the model; drop the offending fields and use defaults
            bad = {error["loc"][0] for error in e.errors() if error.get("loc")}
            if not bad:
                bad = {key for key, value in fields.items() if isinstance(value, (list, dict))}
            logger.warning(f"Malformed {entity} row, ignoring fields {sorted(bad)}: {str(e)}")
            return schema.model_validate({key: value for key, value in fields.items() if key not in bad})

    def get_business_profile(self, config_id: str) -> Optional[demo_schemas.BusinessProfile]:
        return self._get_one(models.DemoBusinessProfile, demo_schemas.BusinessProfile, config_id, "business_profile")

    def save_business_profile(self, config_id: str, profile: demo_schemas.BusinessProfile) -> None:
        self._save_one(models.DemoBusinessProfile, config_id, profile, "business_profile")

    def get_agent_config(self, config_id: str) -> Optional[demo_schemas.AgentConfig]:
        return self._get_one(models.DemoAgentConfig, demo_schemas.AgentConfig, config_id, "agent_config")

    def save_agent_config(self, config_id: str, agent: demo_schemas.AgentConfig) -> None:
        self._save_one(models.DemoAgentConfig, config_id, agent, "agent_config")

    def get_scenario(self, config_id: str) -> Optional[demo_schemas.ScenarioConfig]:
        return self._get_one(models.DemoScenario, demo_schemas.ScenarioConfig, config_id, "scenario")

    def save_scenario(self, config_id: str, scenario: demo_schemas.ScenarioConfig) -> None:
        self._save_one(models.DemoScenario, config_id, scenario, "scenario")

    def get_ui_labels(self, config_id: str) -> Optional[demo_schemas.UILabels]:
        return self._get_one(models.DemoUILabels, demo_schemas.UILabels, config_id, "ui_labels")

    def save_ui_labels(self, config_id: str, labels: demo_schemas.UILabels) -> None:
        self._save_one(models.DemoUILabels, config_id, labels, "ui_labels")

    def _list_many(self, model, schema, config_id: str, entity: str, order_by):
        with self._read(entity, "list") as db:
            rows = db.execute(
                select(model).where(model.demo_config_id == config_id).order_by(*order_by)
            ).scalars().all()
            return [self._validate_satellite(schema, _satellite_fields(row), entity) for row in rows]

    def _upsert_many(self, model, config_id: str, payload, entity: str, natural_key: Sequence[str]) -> None:
        values = payload.model_dump(mode="json")
        with self._write(entity, "upsert") as db:
            query = select(model).where(model.demo_config_id == config_id)
            for key in natural_key:
                query = query.where(getattr(model, key) == values[key])
            row = db.execute(query).scalar_one_or_none()
            if row is None:
                db.add(model(demo_config_id=config_id, **values))
            else:
                self._apply(row, values)

    def list_tool_configs(self, config_id: str) -> List[demo_schemas.ToolConfig]:
        return self._list_many(
            models.DemoToolConfig, demo_schemas.ToolConfig, config_id, "tool_config",
            (models.DemoToolConfig.id,),
        )

    def upsert_tool_config(self, config_id: str, tool: demo_schemas.ToolConfig) -> None:
        self._upsert_many(models.DemoToolConfig, config_id, tool, "tool_config", ("tool_name",))

    def delete_tool_config(self, config_id: str, tool_name: str) -> None:
        with self._write("tool_config", "delete") as db:
            db.execute(delete(models.DemoToolConfig).where(
                models.DemoToolConfig.demo_config_id == config_id,
                models.DemoToolConfig.tool_name == tool_name,
            ))

    def list_sms_templates(self, config_id: str) -> List[demo_schemas.SMSTemplate]:
        return self._list_many(
            models.DemoSMSTemplate, demo_schemas.SMSTemplate, config_id, "sms_template",
            (models.DemoSMSTemplate.template_type, models.DemoSMSTemplate.template_name),
        )

    def upsert_sms_template(self, config_id: str, template: demo_schemas.SMSTemplate) -> None:
        self._upsert_many(
            models.DemoSMSTemplate, config_id, template, "sms_template", ("template_type", "template_name"),
        )

    def delete_sms_template(self, config_id: str, template_type: str, template_name: str) -> None:
        with self._write("sms_template", "delete") as db:
            db.execute(delete(models.DemoSMSTemplate).where(
                models.DemoSMSTemplate.demo_config_id == config_id,
                models.DemoSMSTemplate.template_type == _plain(template_type),
                models.DemoSMSTemplate.template_name == template_name,
            ))

    def list_mock_data_pools(self, config_id: str) -> List[demo_schemas.MockDataPool]:
        return self._list_many(
            models.DemoMockDataPool, demo_schemas.MockDataPool, config_id, "mock_data_pool",
            (models.DemoMockDataPool.pool_type,),
        )

    def upsert_mock_data_pool(self, config_id: str, pool: demo_schemas.MockDataPool) -> None:
        self._upsert_many(models.DemoMockDataPool, config_id, pool, "mock_data_pool", ("pool_type",))

    def delete_mock_data_pool(self, config_id: str, pool_type: str) -> None:
        with self._write("mock_data_pool", "delete") as db:
            db.execute(delete(models.DemoMockDataPool).where(
                models.DemoMockDataPool.demo_config_id == config_id,
                models.DemoMockDataPool.pool_type == _plain(pool_type),
            ))

    # ==================== TRANSACTIONS ====================

    def begin_transaction(self) -> None:
        with self._lock:
            self._ensure_open()
            if self._in_transaction:
                raise TransactionStateError("A transaction is already active", "transaction", "begin")
            # close the implicit transaction left by earlier reads
            self._session.commit()
            self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            self._ensure_open()
            if not self._in_transaction:
                raise TransactionStateError("No active transaction to commit", "transaction", "commit")
            try:
                self._session.commit()
            except IntegrityError as e:
                self._session.rollback()
                raise ConstraintViolationError(str(e.orig), "transaction", "commit")
            except SQLAlchemyError as e:
                self._session.rollback()
                logger.error(f"Error committing transaction: {str(e)}")
                raise StoreError(f"Database error: {str(e)}", "transaction", "commit")
            finally:
                self._in_transaction = False
                self._session.expunge_all()
        self._schedule_flush()

    def rollback(self) -> None:
        with self._lock:
            if not self._in_transaction:
                logger.warning("Rollback requested with no active transaction")
                return
            try:
                self._session.rollback()
            finally:
                self._in_transaction = False
                self._session.expunge_all()

    # ==================== UTILITY ====================

    def execute_raw_query(
        self, sql: str, params: Optional[Union[Sequence[Any], Dict[str, Any]]] = None
    ) -> Union[List[Dict[str, Any]], Dict[str, int]]:
        if params is None:
            bound = ()
        elif isinstance(params, dict):
            bound = params
        else:
            bound = tuple(params)
        with self._write("raw_query", "execute") as db:
            result = db.connection().exec_driver_sql(sql, bound)
            if result.returns_rows:
                return [dict(row._mapping) for row in result]
            return {"rowcount": result.rowcount}

    def get_stats(self) -> schemas.DatabaseStats:
        counted = {
            "patients": models.Patient,
            "children": models.Child,
            "appointments": models.Appointment,
            "conversations": models.Conversation,
            "function_calls": models.FunctionCall,
            "call_metrics": models.CallMetrics,
            "test_scenarios": models.TestScenario,
            "test_executions": models.TestExecution,
            "skill_execution_logs": models.SkillExecutionLog,
            "demo_configs": models.DemoConfig,
        }
        with self._read("database", "stats") as db:
            counts = {
                key: db.execute(select(func.count()).select_from(model)).scalar_one()
                for key, model in counted.items()
            }
        return schemas.DatabaseStats(**counts)

    @staticmethod
    def _export_value(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (bytes, bytearray, memoryview)):
            return base64.b64encode(bytes(value)).decode("ascii")
        return value

    def export_to_json(self) -> str:
        document: Dict[str, Any] = {
            "version": demo_schemas.EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._read("database", "export") as db:
            for key, model in models.OPERATIONAL_TABLES:
                table = model.__table__
                rows = db.execute(select(table).order_by(*table.primary_key.columns)).all()
                document[key] = [
                    {column.name: self._export_value(row._mapping[column]) for column in table.columns}
                    for row in rows
                ]
        return json.dumps(document)

    @staticmethod
    def _import_value(column, value: Any) -> Any:
        if value is None:
            if isinstance(column.type, DateTime) and column.server_default is not None:
                return datetime.now(timezone.utc).replace(tzinfo=None)
            if column.default is not None and column.default.is_scalar:
                return column.default.arg
            return None
        if isinstance(column.type, DateTime) and isinstance(value, str):
            parsed = datetime.fromisoformat(value)
            return parsed.astimezone(timezone.utc).replace(tzinfo=None) if parsed.tzinfo else parsed
        if isinstance(column.type, LargeBinary) and isinstance(value, str):
            return base64.b64decode(value, validate=True)
        if isinstance(column.type, Boolean):
            if isinstance(value, bool):
                return value
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            raise ValueError(f"{column.name} expects a boolean, got {value!r}")
        return value

    def _prepare_import(self, payload: str) -> Dict[str, List[Dict[str, Any]]]:
        try:
            document = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise StoreValidationError(f"Import document is not valid JSON: {str(e)}", "database", "import")
        if not isinstance(document, dict):
            raise StoreValidationError("Import document must be a JSON object", "database", "import")
        version = document.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            raise StoreValidationError("Import document has no integer 'version'", "database", "import")
        if version > demo_schemas.EXPORT_FORMAT_VERSION:
            raise StoreValidationError(
                f"Export format version {version} is newer than supported version "
                f"{demo_schemas.EXPORT_FORMAT_VERSION}",
                "database", "import",
            )
        missing = [key for key in REQUIRED_EXPORT_KEYS if not isinstance(document.get(key), list)]
        if missing:
            raise StoreValidationError(f"Import document is missing tables: {', '.join(missing)}", "database", "import")

        prepared = {}
        for key, model in models.OPERATIONAL_TABLES:
            columns = list(model.__table__.columns)
            rows = []
            for index, row in enumerate(document.get(key) or []):
                if not isinstance(row, dict):
                    raise StoreValidationError(f"{key}[{index}] is not an object", "database", "import")
                try:
                    rows.append({column.key: self._import_value(column, row.get(column.name)) for column in columns})
                except (ValueError, binascii.Error) as e:
                    raise StoreValidationError(f"{key}[{index}] has an invalid value: {str(e)}", "database", "import")
            prepared[key] = rows
        return prepared

    def import_from_json(self, document: str) -> None:
        prepared = self._prepare_import(document)
        with self._lock:
            self.begin_transaction()
            try:
                for key, model in reversed(models.OPERATIONAL_TABLES):
                    self._session.execute(delete(model.__table__))
                for key, model in models.OPERATIONAL_TABLES:
                    if prepared[key]:
                        self._session.execute(insert(model.__table__), prepared[key])
            except IntegrityError as e:
                self.rollback()
                logger.warning(f"Import rejected by constraint: {str(e.orig)}")
                raise ConstraintViolationError(str(e.orig), "database", "import")
            except SQLAlchemyError as e:
                self.rollback()
                logger.error(f"Import failed: {str(e)}")
                raise StoreError(f"Database error: {str(e)}", "database", "import")
            self.commit()
        logger.info("Database replaced from import document")

    def flush(self) -> bool:
        """Write the byte image now instead of waiting for the debounce."""
        if self._flusher is None:
            return False
        return self._flusher.flush_now()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._in_transaction:
                logger.warning("Closing with an open transaction; rolling it back")
                self.rollback()
        if self._flusher is not None:
            self._flusher.shutdown()
        with self._lock:
            self._closed = True
            self._session.close()
            self._engine.dispose()
