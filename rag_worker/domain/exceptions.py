from typing import Optional


class RagWorkerError(Exception):
    """Base class for errors raised by rag-worker components."""

    #: Whether repeating the same call may succeed.
    retryable: bool = False


class InvalidJSONError(RagWorkerError):
    pass


class RequestValidationError(RagWorkerError):
    """A request or event is missing fields or carries invalid values."""
    pass


class ChunkingConfigError(RagWorkerError):
    pass


class UnsupportedContentTypeError(RagWorkerError):
    pass


class DocumentStoreError(RagWorkerError):
    """The relational store is unavailable or rejected a statement."""
    pass


class ObjectStoreError(RagWorkerError):
    pass


class EventPublishError(RagWorkerError):
    """A Kafka event could not be confirmed as delivered."""
    pass


class VectorIndexError(RagWorkerError):
    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = transient or (status_code is not None and (status_code == 429 or status_code >= 500))


class CollectionNotFoundError(VectorIndexError):
    def __init__(self, collection: str):
        super().__init__(f"qdrant collection not found: {collection}", status_code=404)
        self.collection = collection


class UpstreamModelError(RagWorkerError):
    """
    Failure of an Azure OpenAI call.

    ``status_code`` is the HTTP status returned by the endpoint, or None when no
    response was received (timeout, connection error) or the response body was
    unusable.
    """

    def __init__(self, service: str, message: str, status_code: Optional[int] = None, transient: bool = False):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self._transient = transient

    @property
    def unauthorized(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def server_error(self) -> bool:
        return self.status_code is not None and self.status_code >= 500

    @property
    def retryable(self) -> bool:
        return self._transient or self.rate_limited or self.server_error
