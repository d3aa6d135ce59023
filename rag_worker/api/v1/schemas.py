# File: rag_worker/api/v1/schemas.py
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from rag_worker.domain.models import DEFAULT_TOPK


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""
    error: ErrorBody


class SearchRequest(BaseModel):
    tenant_id: StrictStr
    kb_id: StrictStr
    query: StrictStr
    topk: StrictInt = Field(default=DEFAULT_TOPK, gt=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"tenant_id": "tenant-001", "kb_id": "kb-001", "query": "refund policy", "topk": 5}
        }
    )


class AnswerRequest(BaseModel):
    tenant_id: StrictStr
    kb_id: StrictStr
    question: StrictStr
    topk: StrictInt = Field(default=DEFAULT_TOPK, gt=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"tenant_id": "tenant-001", "kb_id": "kb-001", "question": "How do refunds work?"}
        }
    )
