# voice_store/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .adapters.base import DatabaseAdapter
from .adapters.factory import build_adapter
from .config import get_settings
from .core.logging import setup_logging
from .errors import (
    StoreError, ConstraintViolationError, StoreValidationError, TransactionStateError, TransportError,
)
from .routers import database_api, health, services_api
from .services.demo_config_service import DemoConfigService

logger = logging.getLogger(__name__)

# Most specific first; anything else derived from StoreError is a 500
ERROR_STATUS = [
    (ConstraintViolationError, status.HTTP_409_CONFLICT),
    (TransactionStateError, status.HTTP_409_CONFLICT),
    (StoreValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
]


def _error_body(message: str, error_type: Optional[str] = None) -> dict:
    body = {"error": message}
    if error_type:
        body["error_type"] = error_type
    return body


def create_app(adapter: Optional[DatabaseAdapter] = None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, json_output=settings.log_json)
        if getattr(app.state, "adapter", None) is None:
            app.state.adapter = build_adapter(settings)
        DemoConfigService(app.state.adapter).ensure_default()
        logger.info(f"Database API ready on the {app.state.adapter.backend_name} backend")
        yield
        logger.info("Shutting down, closing the database adapter")
        app.state.adapter.close()

    app = FastAPI(title="Voice Demo Persistence Service", version=settings.app_version, lifespan=lifespan)
    app.state.adapter = adapter

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), status.HTTP_500_INTERNAL_SERVER_ERROR)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {str(exc)}")
        return JSONResponse(status_code=code, content=_error_body(str(exc), type(exc).__name__))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body("; ".join(messages) or "Invalid request", "RequestValidationError"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))

    app.include_router(database_api.router, prefix=settings.remote_api_prefix)
    app.include_router(services_api.router, prefix="/api/services")
    app.include_router(health.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("voice_store.main:app", host="0.0.0.0", port=3001, reload=get_settings().debug)
