# voice_store/routers/health.py
from fastapi import APIRouter, Depends

from .. import schemas
from ..adapters.base import DatabaseAdapter
from ..database import SCHEMA_VERSION
from .database_api import get_adapter

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
)

@router.get("", response_model=schemas.HealthResponse)
async def health_check(db: DatabaseAdapter = Depends(get_adapter)):
    """Liveness plus row counts, so a caller can tell an empty store from a broken one."""
    return schemas.HealthResponse(
        status="healthy",
        backend=db.backend_name,
        schema_version=SCHEMA_VERSION,
        stats=db.get_stats(),
    )
