# app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import api_router
from app.api.v1 import v1_router
from app.api.v1.envelope import error
from app.config.settings import Settings, get_settings
from app.core.db import create_engine_for, create_session_factory, create_tables
from app.core.logging_config import setup_logging
from app.domain.errors import (
    BuildError,
    ConcurrentModification,
    DuplicateFiling,
    FilingError,
    FilingNotFound,
    ImmutableStateViolation,
    InvalidTransition,
    PermissionDenied,
    SubmissionError,
    ValidationError,
)
from app.domain.services.audit_service import AuditTrail
from app.domain.services.discrepancy_engine import ReconciliationPolicy
from app.domain.services.filing_state_machine import FilingStateMachine
from app.domain.services.tax_rate_service import TaxRateService
from app.infrastructure.db.repositories import InMemoryFilingRepository, SqlFilingRepository
from app.infrastructure.external.efiling_gateway_client import EFilingGatewayClient

logger = logging.getLogger("app.main")

# First match wins; DuplicateFiling must precede ValidationError.
_ERROR_STATUS: list[tuple[type[FilingError], int]] = [
    (DuplicateFiling, 409),
    (ConcurrentModification, 409),
    (InvalidTransition, 409),
    (ImmutableStateViolation, 423),
    (PermissionDenied, 403),
    (FilingNotFound, 404),
    (SubmissionError, 503),
    (BuildError, 422),
    (ValidationError, 422),
]


def status_for(exc: FilingError) -> int:
    for cls, status_code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status_code
    return 400


async def filing_error_handler(request: Request, exc: FilingError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content=error(str(exc), errors=[exc.to_dict()]))


def create_app(
    settings: Settings | None = None,
    *,
    repository=None,
    gateway=None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    engine = None
    if repository is None:
        if settings.DATABASE_URL:
            engine = create_engine_for(settings.DATABASE_URL)
            repository = SqlFilingRepository(create_session_factory(engine))
        else:
            repository = InMemoryFilingRepository()
    if gateway is None and settings.EFILING_GATEWAY_API_KEY:
        gateway = EFilingGatewayClient.from_settings(settings)

    machine = FilingStateMachine(
        repository,
        tax_rates=TaxRateService(settings.TAX_RATE_OVERRIDES_PATH or None),
        policy=ReconciliationPolicy.from_settings(settings),
        gateway=gateway,
        audit=AuditTrail(),
        max_submit_attempts=settings.SUBMISSION_MAX_ATTEMPTS,
        submit_backoff_seconds=settings.SUBMISSION_BACKOFF_SECONDS,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            await create_tables(engine)
        logger.info(
            "%s started (%s, repository=%s, gateway=%s)",
            settings.APP_NAME, settings.ENVIRONMENT,
            type(repository).__name__, "configured" if gateway else "none",
        )
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="ITR Filing Engine", debug=settings.DEBUG, lifespan=lifespan)
    app.state.state_machine = machine
    app.add_exception_handler(FilingError, filing_error_handler)
    app.include_router(api_router)
    app.include_router(v1_router)
    return app


app = create_app()
