# voice_store/routers/services_api.py
from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..adapters.base import DatabaseAdapter
from ..demo_schemas import MockDataPoolType
from ..services.call_metrics_service import CallMetricsService
from ..services.mock_data_service import MockDataService
from ..services.testing_service import TestingService
from .database_api import get_adapter

router = APIRouter(
    tags=["Services"],
    responses={404: {"description": "Not found"}},
)


# ==================== TEST RUNS ====================

@router.post("/test-scenarios/{scenario_id}/runs", status_code=status.HTTP_201_CREATED,
             response_model=schemas.TestExecution)
async def record_test_run(scenario_id: str, run: schemas.TestRunRequest, db: DatabaseAdapter = Depends(get_adapter)):
    """Compare a run's result with the scenario's expected outcome and store the execution."""
    return TestingService(db).record_run(
        scenario_id, run.actual_result,
        conversation_id=run.conversation_id, execution_time_ms=run.execution_time_ms,
    )

@router.get("/test-scenarios/{scenario_id}/pass-rate")
async def get_pass_rate(scenario_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    if db.get_test_scenario(scenario_id) is None:
        raise HTTPException(status_code=404, detail="Test scenario not found")
    return TestingService(db).get_pass_rate(scenario_id)

# ==================== CALL METRICS ====================

@router.post("/conversations/{conversation_id}/call-metrics/calculate", response_model=schemas.CallMetrics)
async def calculate_call_metrics(conversation_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    if db.get_conversation(conversation_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return CallMetricsService(db).calculate_metrics(conversation_id)

@router.get("/call-metrics/summary")
async def get_call_metrics_summary(db: DatabaseAdapter = Depends(get_adapter)):
    return CallMetricsService(db).get_summary_stats()

# ==================== MOCK DATA ====================

def _mock_data(config_id: str, db: DatabaseAdapter) -> MockDataService:
    if db.get_demo_config_header(config_id) is None:
        raise HTTPException(status_code=404, detail="Demo config not found")
    mock_data = MockDataService(db)
    mock_data.load_config(config_id)
    return mock_data

@router.get("/demo-configs/{config_id}/mock-data")
async def get_mock_data_stats(config_id: str, db: DatabaseAdapter = Depends(get_adapter)):
    return {"pools": _mock_data(config_id, db).get_pool_stats()}

@router.get("/demo-configs/{config_id}/mock-data/patients/phone/{phone}")
async def find_mock_patient_by_phone(config_id: str, phone: str, db: DatabaseAdapter = Depends(get_adapter)):
    mock_data = _mock_data(config_id, db)
    patient = mock_data.find_patient_by_phone(phone)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return {"patient": patient, "children": mock_data.get_children_for_patient(patient["patient_id"])}

@router.get("/demo-configs/{config_id}/mock-data/{pool_type}")
async def get_mock_data_pool(config_id: str, pool_type: MockDataPoolType, db: DatabaseAdapter = Depends(get_adapter)):
    return {"records": _mock_data(config_id, db).get_pool(pool_type)}
