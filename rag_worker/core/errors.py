"""
Error classification shared by the Kafka request worker and the HTTP API.

Both surfaces reduce an exception to the same stable code, so a given root
cause is reported identically to asynchronous and synchronous callers.
"""
from enum import Enum
from typing import Dict, Union

import httpx
from fastapi.exceptions import RequestValidationError as FastAPIRequestValidationError
from pydantic import ValidationError

from rag_worker.domain.exceptions import (
    CollectionNotFoundError,
    InvalidJSONError,
    RagWorkerError,
    RequestValidationError,
    UpstreamModelError,
    VectorIndexError,
)


class ErrorCode(str, Enum):
    INVALID_JSON = "INVALID_JSON"
    INVALID_REQUEST = "INVALID_REQUEST"
    COLLECTION_NOT_FOUND = "COLLECTION_NOT_FOUND"
    QDRANT_ERROR = "QDRANT_ERROR"
    AZURE_UNAUTHORIZED = "AZURE_UNAUTHORIZED"
    AZURE_RATE_LIMIT = "AZURE_RATE_LIMIT"
    AZURE_ERROR = "AZURE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.COLLECTION_NOT_FOUND: 404,
    ErrorCode.QDRANT_ERROR: 502,
    ErrorCode.AZURE_UNAUTHORIZED: 502,
    ErrorCode.AZURE_RATE_LIMIT: 503,
    ErrorCode.AZURE_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}

_TRANSIENT_SIGNALS = ("429", "rate limit", "temporarily", "timeout", "timed out", "retry")


def classify_error(exc: BaseException) -> ErrorCode:
    """Maps an exception to its error code. Request-shape errors win over index errors, which win over model errors."""
    if isinstance(exc, InvalidJSONError):
        return ErrorCode.INVALID_JSON
    if isinstance(exc, (RequestValidationError, ValidationError)):
        return ErrorCode.INVALID_REQUEST
    if isinstance(exc, CollectionNotFoundError):
        return ErrorCode.COLLECTION_NOT_FOUND
    if isinstance(exc, VectorIndexError):
        return ErrorCode.QDRANT_ERROR
    if isinstance(exc, UpstreamModelError):
        if exc.unauthorized:
            return ErrorCode.AZURE_UNAUTHORIZED
        if exc.rate_limited:
            return ErrorCode.AZURE_RATE_LIMIT
        return ErrorCode.AZURE_ERROR

    # Foreign exceptions: fall back to the text of the message.
    message = str(exc).lower()
    if "collection not found" in message:
        return ErrorCode.COLLECTION_NOT_FOUND
    if "qdrant" in message:
        return ErrorCode.QDRANT_ERROR
    if "azure" in message:
        if "401" in message or "403" in message or "unauthorized" in message:
            return ErrorCode.AZURE_UNAUTHORIZED
        if "429" in message or "rate limit" in message:
            return ErrorCode.AZURE_RATE_LIMIT
        return ErrorCode.AZURE_ERROR
    return ErrorCode.INTERNAL_ERROR


def http_status_for(code: ErrorCode) -> int:
    return HTTP_STATUS_BY_CODE.get(code, 500)


def is_transient(exc: BaseException) -> bool:
    """True when repeating the failed call may succeed (rate limit, 5xx, timeout)."""
    if isinstance(exc, RagWorkerError):
        return exc.retryable
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, TimeoutError, ConnectionError)):
        return True
    message = str(exc).lower()
    return any(signal in message for signal in _TRANSIENT_SIGNALS)


def validation_error_message(exc: Union[ValidationError, FastAPIRequestValidationError]) -> str:
    """Flattens the first validation error into a short, stable message."""
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    loc = list(first.get("loc", ()))
    if loc and loc[0] == "body":
        loc = loc[1:]
    field = ".".join(str(part) for part in loc) or "body"
    error_type = first.get("type", "")
    if error_type == "missing":
        return f"missing field: {field}"
    if error_type in ("greater_than", "greater_than_equal"):
        return f"{field} must be positive"
    if error_type in ("string_too_short",):
        return f"field empty: {field}"
    return f"invalid field type: {field}"
