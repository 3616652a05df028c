"""FastAPI application exposing the card submission contract.

The gateway is deliberately thin: it maps HTTP onto
:meth:`WorkflowOrchestrator.submit` and problem details back onto HTTP.
Clients poll the record store for results; there is no status endpoint.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import Field

from CollectIQ_core.bootstrap import CoreServices, build_services
from CollectIQ_core.models import CardIdentity, CoreModel
from CollectIQ_core.observability import setup_observability, shutdown_tracing
from CollectIQ_core.utils.errors import FoundationError, InvalidSubmissionError, ProblemDetail
from CollectIQ_core.utils.logging import bind_log_context, get_correlation_id, reset_log_context

logger = structlog.get_logger(__name__)

SUBMISSIONS_PATH = "/v1/cards/submissions"


class SubmissionBody(CoreModel):
    """HTTP body of a submission; the key may come from a header instead."""

    idempotency_key: str | None = Field(default=None, max_length=256)
    card_id: str
    image_ref: str
    force_refresh: bool = False
    identity: CardIdentity | None = None


class SubmissionResponse(CoreModel):
    accepted: bool
    execution_id: str
    card_id: str


def create_problem_response(detail: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        detail.model_dump(),
        status_code=detail.status,
        media_type="application/problem+json",
    )


def create_app(services: CoreServices | None = None) -> FastAPI:
    services = services or build_services()
    settings = services.settings

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        yield
        await services.aclose()
        shutdown_tracing(application.state.tracer_provider)

    app = FastAPI(title="CollectIQ Card Valuation Core", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.state.tracer_provider = setup_observability(app, settings)

    correlation_header = settings.observability.logging.correlation_id_header

    @app.middleware("http")
    async def bind_request_correlation(request: Request, call_next: Any) -> Any:
        token = None
        incoming = request.headers.get(correlation_header)
        if incoming:
            token = bind_log_context(correlation_id=incoming)
        try:
            return await call_next(request)
        finally:
            if token is not None:
                reset_log_context(token)

    def _log_problem(event: str, detail: ProblemDetail) -> None:
        logger.warning(event, correlation_id=get_correlation_id(), problem=detail.model_dump())

    @app.exception_handler(FoundationError)
    async def handle_foundation_error(_: Request, exc: FoundationError) -> JSONResponse:
        _log_problem("gateway.error", exc.problem)
        return create_problem_response(exc.problem)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(_: Request, exc: RequestValidationError) -> JSONResponse:
        detail = InvalidSubmissionError(
            "One or more fields are invalid",
            errors=[{"loc": list(error.get("loc", ())), "msg": error.get("msg")} for error in exc.errors()],
        ).problem
        _log_problem("gateway.validation_error", detail)
        return create_problem_response(detail)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(SUBMISSIONS_PATH, response_model=SubmissionResponse, response_model_by_alias=True)
    async def submit_card(
        body: SubmissionBody,
        idempotency_key: str | None = Header(default=None, alias=settings.idempotency.header),
        alt_idempotency_key: str | None = Header(default=None, alias=settings.idempotency.alternate_header),
    ) -> JSONResponse:
        key = body.idempotency_key or idempotency_key or alt_idempotency_key
        if not key:
            raise InvalidSubmissionError(
                f"An idempotency key is required in the body or the {settings.idempotency.header} header"
            )
        payload = body.model_dump(exclude={"idempotency_key"})
        payload["idempotency_key"] = key
        result = await services.orchestrator.submit(payload)
        response = SubmissionResponse(
            accepted=result.accepted,
            execution_id=result.execution_id,
            card_id=result.card_id,
        )
        return JSONResponse(
            response.model_dump(by_alias=True),
            status_code=202 if result.accepted else 200,
        )

    return app


__all__ = ["SubmissionBody", "SubmissionResponse", "create_app", "create_problem_response"]
