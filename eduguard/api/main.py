"""
EduGuard REST API

Routers are mounted under /api/v1; /health and /metrics stay at the root.
Run with: uvicorn eduguard.api.main:app
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import EduGuardError
from ..core.logging_config import configure_logging
from ..database.config import get_db_config
from ..notifications.dispatcher import shutdown_dispatcher
from .deps import get_db
from .exceptions import DatabaseOperationError, EduGuardAPIException, to_api_exception
from .routers import metrics, notifications, records, risk_flags, settings
from .schemas.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    get_db_config()
    logger.info("Starting EduGuard API", extra={"version": VERSION})
    yield
    shutdown_dispatcher(wait=True)
    logger.info("Shutting down EduGuard API")


def _error_response(exc: EduGuardAPIException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(ErrorResponse(
            error=ErrorDetail(error_code=exc.error_code, message=str(exc.detail), extra=exc.extra)
        )),
        headers=exc.headers,
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="EduGuard API",
        description="Student dropout risk detection: risk flags, record writes and notifications",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EduGuardError)
    async def domain_error_handler(request: Request, exc: EduGuardError):
        logger.info(
            f"Request rejected: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.error_code}
        )
        return _error_response(to_api_exception(exc))

    @app.exception_handler(EduGuardAPIException)
    async def api_error_handler(request: Request, exc: EduGuardAPIException):
        return _error_response(exc)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error: {exc}", extra={"path": request.url.path}, exc_info=exc)
        return _error_response(DatabaseOperationError(request.url.path, type(exc).__name__))

    app.include_router(risk_flags.router, prefix=API_PREFIX)
    app.include_router(records.router, prefix=API_PREFIX)
    app.include_router(settings.router, prefix=API_PREFIX)
    app.include_router(notifications.router, prefix=API_PREFIX)
    app.include_router(metrics.router)

    @app.get("/health", tags=["Monitoring"])
    def health(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
            database = "ok"
        except SQLAlchemyError as e:
            logger.error(f"Health check database error: {e}")
            database = "error"
        return {"status": "healthy" if database == "ok" else "degraded", "database": database, "version": VERSION}

    return app


app = create_app()
