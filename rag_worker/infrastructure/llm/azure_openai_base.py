# File: rag_worker/infrastructure/llm/azure_openai_base.py
import time
from typing import Callable, Optional, TypeVar

import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    AzureOpenAI,
    InternalServerError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from rag_worker.core.config import Settings
from rag_worker.core.metrics import UPSTREAM_DURATION_SECONDS, UPSTREAM_ERRORS_TOTAL
from rag_worker.core.retry import RetryPolicy, exponential_backoff
from rag_worker.domain.exceptions import UpstreamModelError

log = structlog.get_logger(__name__)

T = TypeVar("T")


def build_azure_openai_client(settings: Settings, timeout_seconds: float) -> AzureOpenAI:
    """SDK retries are disabled; each adapter applies its own RetryPolicy."""
    if not settings.AZURE_OPENAI_ENDPOINT or not settings.AZURE_OPENAI_API_KEY.get_secret_value():
        raise UpstreamModelError(
            "client",
            "azure openai is not configured: set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY",
        )
    return AzureOpenAI(
        azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
        api_key=settings.AZURE_OPENAI_API_KEY.get_secret_value(),
        api_version=settings.AZURE_OPENAI_API_VERSION,
        timeout=timeout_seconds,
        max_retries=0,
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamModelError) and exc.retryable


class AzureOpenAIAdapterBase:
    """
    Shared call path of the Azure OpenAI adapters.

    SDK exceptions are mapped onto UpstreamModelError with the HTTP status of
    the response. 401/403 and other 4xx fail on the first attempt; 429, 5xx and
    connection failures are retried with exponential backoff.
    """

    service: str = "openai"

    def __init__(
        self,
        client: AzureOpenAI,
        deployment: str,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._deployment = deployment
        self.retry_policy = RetryPolicy(
            name=f"azure_{self.service}",
            max_attempts=max_attempts,
            wait=exponential_backoff(backoff_base_seconds),
            is_retryable=_is_retryable,
            sleep=sleep,
        )
        self.log = log.bind(adapter=type(self).__name__, deployment=deployment)

    def _invoke(self, operation: Callable[[], T]) -> T:
        try:
            return self.retry_policy.call(self._attempt, operation)
        except UpstreamModelError as e:
            if not e.retryable:
                raise
            self.log.error("Azure call exhausted its attempts", status_code=e.status_code, error=str(e))
            raise UpstreamModelError(
                self.service,
                f"azure {self.service} failed after retries: {e}",
                status_code=e.status_code,
                transient=True,
            ) from e

    def _attempt(self, operation: Callable[[], T]) -> T:
        try:
            with UPSTREAM_DURATION_SECONDS.labels(service=self.service).time():
                return operation()
        except (AuthenticationError, PermissionDeniedError) as e:
            self._record("unauthorized")
            self.log.error("Azure OpenAI rejected the credentials", status_code=e.status_code, error=str(e))
            raise UpstreamModelError(
                self.service, f"azure {self.service} unauthorized (status {e.status_code})", status_code=e.status_code
            ) from e
        except RateLimitError as e:
            self._record("rate_limit_error")
            self.log.warning("Azure OpenAI rate limit exceeded", error=str(e))
            raise UpstreamModelError(
                self.service, f"azure {self.service} rate limited (status 429)", status_code=429
            ) from e
        except InternalServerError as e:
            self._record("server_error")
            self.log.warning("Azure OpenAI server error", status_code=e.status_code, error=str(e))
            raise UpstreamModelError(
                self.service, f"azure {self.service} request failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except APIStatusError as e:
            self._record(f"http_{e.status_code}")
            self.log.error("Azure OpenAI request rejected", status_code=e.status_code, error=str(e))
            raise UpstreamModelError(
                self.service, f"azure {self.service} request failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except APIConnectionError as e:
            # Includes APITimeoutError.
            self._record("connection_error")
            self.log.warning("Azure OpenAI connection error", error=str(e))
            raise UpstreamModelError(
                self.service, f"azure {self.service} connection failed: {e}", transient=True
            ) from e
        except OpenAIError as e:
            error_type = type(e).__name__
            self._record(error_type)
            self.log.error(f"Azure OpenAI error: {error_type}", error=str(e))
            raise UpstreamModelError(self.service, f"azure {self.service} error: {e}") from e

    def _record(self, error_type: str) -> None:
        UPSTREAM_ERRORS_TOTAL.labels(service=self.service, error_type=error_type).inc()

    def _malformed(self, detail: str, status_code: Optional[int] = None) -> UpstreamModelError:
        self._record("malformed_response")
        return UpstreamModelError(self.service, f"azure {self.service} {detail}", status_code=status_code)
