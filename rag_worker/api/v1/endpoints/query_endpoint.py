# File: rag_worker/api/v1/endpoints/query_endpoint.py
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from rag_worker.api.v1.schemas import AnswerRequest, ErrorResponse, SearchRequest
from rag_worker.application.use_cases.answer_use_case import AnswerUseCase
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.core.errors import classify_error, http_status_for
from rag_worker.domain.models import AnswerResponse, SearchResponse

log = structlog.get_logger(__name__)
router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_search_use_case(request: Request) -> SearchUseCase:
    return request.app.state.search_use_case


def get_answer_use_case(request: Request) -> AnswerUseCase:
    return request.app.state.answer_use_case


def error_response(exc: Exception) -> JSONResponse:
    code = classify_error(exc)
    return JSONResponse(
        status_code=http_status_for(code),
        content={"error": {"code": code.value, "message": str(exc)}},
    )


@router.post(
    "/search",
    response_model=SearchResponse,
    responses=_ERROR_RESPONSES,
    summary="Semantic search over one tenant knowledge base.",
)
def search(body: SearchRequest, use_case: SearchUseCase = Depends(get_search_use_case)):
    endpoint_log = log.bind(tenant_id=body.tenant_id, kb_id=body.kb_id, topk=body.topk)
    try:
        return use_case.execute(body.tenant_id, body.kb_id, body.query, body.topk)
    except Exception as e:
        endpoint_log.error("Search request failed", error=str(e), error_type=type(e).__name__)
        return error_response(e)


@router.post(
    "/answer",
    response_model=AnswerResponse,
    responses=_ERROR_RESPONSES,
    summary="Answer a question from the retrieved context of one tenant knowledge base.",
)
def answer(body: AnswerRequest, use_case: AnswerUseCase = Depends(get_answer_use_case)):
    endpoint_log = log.bind(tenant_id=body.tenant_id, kb_id=body.kb_id, topk=body.topk)
    try:
        return use_case.execute(body.tenant_id, body.kb_id, body.question, body.topk)
    except Exception as e:
        endpoint_log.error("Answer request failed", error=str(e), error_type=type(e).__name__)
        return error_response(e)
