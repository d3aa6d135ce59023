# File: rag_worker/api/app.py
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as FastAPIRequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

import rag_worker
from rag_worker.api.v1.endpoints import query_endpoint
from rag_worker.application.use_cases.answer_use_case import AnswerUseCase
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.core.config import Settings
from rag_worker.core.errors import ErrorCode, http_status_for, validation_error_message
from rag_worker.core.metrics import REQUEST_PROCESSING_DURATION_SECONDS
from rag_worker.dependencies import get_answer_use_case, get_search_use_case

log = structlog.get_logger(__name__)


def _validation_error_body(exc: FastAPIRequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors and errors[0].get("type") == "json_invalid":
        code, message = ErrorCode.INVALID_JSON, "invalid JSON"
    else:
        code, message = ErrorCode.INVALID_REQUEST, validation_error_message(exc)
    return JSONResponse(
        status_code=http_status_for(code),
        content={"error": {"code": code.value, "message": message}},
    )


def create_app(
    settings: Settings,
    search_use_case: Optional[SearchUseCase] = None,
    answer_use_case: Optional[AnswerUseCase] = None,
) -> FastAPI:
    """Builds the HTTP app. Use cases not supplied are wired from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("RAG Worker HTTP startup sequence initiated...")
        if getattr(app.state, "search_use_case", None) is None or getattr(app.state, "answer_use_case", None) is None:
            app.state.search_use_case = get_search_use_case(settings)
            app.state.answer_use_case = get_answer_use_case(settings, search_use_case=app.state.search_use_case)
            log.info("Dependencies (embedder, Qdrant, chat) initialized.")
        yield
        log.info("RAG Worker HTTP shutdown sequence complete.")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=rag_worker.__version__,
        description="Semantic search and question answering over tenant knowledge bases.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.search_use_case = search_use_case
    app.state.answer_use_case = answer_use_case

    app.mount("/metrics", make_asgi_app())

    @app.middleware("http")
    async def add_request_context_and_metrics(request: Request, call_next):
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        start_time = time.perf_counter()
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        trace_id = request.headers.get("x-trace-id", request_id)
        structlog.contextvars.bind_contextvars(request_id=request_id, trace_id=trace_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "trace_id")

        process_time = time.perf_counter() - start_time
        REQUEST_PROCESSING_DURATION_SECONDS.labels(method=request.method, path=request.url.path).observe(process_time)
        log.info(
            "Request processed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time * 1000, 2),
            request_id=request_id,
            trace_id=trace_id,
        )
        return response

    @app.exception_handler(FastAPIRequestValidationError)
    async def request_validation_handler(request: Request, exc: FastAPIRequestValidationError):
        return _validation_error_body(exc)

    app.include_router(query_endpoint.router, tags=["Query"])

    @app.get("/health", tags=["Health Check"])
    async def health_check():
        return {"status": "healthy"}

    return app
