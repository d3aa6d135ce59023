import uuid
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class DocumentStatus(str, Enum):
    # Persisted verbatim; other implementations may share the table.
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"


class Chunk(BaseModel):
    """A contiguous slice of a document's text, the unit of indexing and retrieval."""
    model_config = ConfigDict(frozen=True)

    seq_no: int = Field(..., ge=0)
    content: str
    content_sha256: str = Field(..., min_length=64, max_length=64)


class Document(BaseModel):
    id: str
    tenant_id: str
    kb_id: str
    status: DocumentStatus
    chunk_count: int = 0
    error_message: Optional[str] = None
    updated_at: Optional[datetime] = None


class IngestEvent(BaseModel):
    """Payload of the doc_ingest topic."""
    tenant_id: StrictStr = Field(..., min_length=1)
    kb_id: StrictStr = Field(..., min_length=1)
    doc_id: StrictStr = Field(..., min_length=1)
    object_key: StrictStr = Field(..., min_length=1)
    content_type: StrictStr = Field(..., min_length=1)
    trace_id: StrictStr = Field(..., min_length=1)
    # Informational only; producers send ISO strings or epoch numbers.
    requested_at: Optional[Any] = None


class IngestOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED_READY = "skipped_ready"
    SKIPPED_PROCESSING = "skipped_processing"
    SKIPPED_CLAIM_LOST = "skipped_claim_lost"
    FAILED = "failed"


DEFAULT_TOPK = 5


class TaskType(str, Enum):
    SEARCH = "SEARCH"
    ANSWER = "ANSWER"


class _TaskRequestBase(BaseModel):
    request_id: StrictStr
    trace_id: StrictStr
    tenant_id: StrictStr
    kb_id: StrictStr
    topk: StrictInt = Field(default=DEFAULT_TOPK, gt=0)


class SearchTaskRequest(_TaskRequestBase):
    query: StrictStr


class AnswerTaskRequest(_TaskRequestBase):
    question: StrictStr


class SearchHit(BaseModel):
    rank: int
    score: float
    doc_id: str
    seq_no: int
    content: str


class SearchResponse(BaseModel):
    collection: str
    topk: int
    results: List[SearchHit] = Field(default_factory=list)


class AnswerSource(BaseModel):
    doc_id: str
    seq_no: int
    score: float


class AnswerResponse(BaseModel):
    answer: str
    sources: List[AnswerSource] = Field(default_factory=list)


# Fixed namespace so point ids are stable across processes and re-runs.
_POINT_NAMESPACE = uuid.UUID("6f1c9a52-3d7e-4b8a-9f0e-2a5c4d8b7e31")


def collection_name_for(tenant_id: str, kb_id: str) -> str:
    return f"{tenant_id}__{kb_id}"


def point_id_for(doc_id: str, seq_no: int) -> str:
    """Deterministic vector point id of a chunk."""
    return str(uuid.uuid5(_POINT_NAMESPACE, f"{doc_id}:{seq_no}"))
