# File: rag_worker/infrastructure/llm/azure_openai_embedder.py
import time
from typing import Callable, List

from openai import AzureOpenAI

from rag_worker.application.ports.embedding_port import EmbeddingPort
from rag_worker.core.config import Settings
from rag_worker.domain.exceptions import RequestValidationError
from rag_worker.infrastructure.llm.azure_openai_base import AzureOpenAIAdapterBase, build_azure_openai_client


class AzureOpenAIEmbedder(AzureOpenAIAdapterBase, EmbeddingPort):
    """
    Adapter for the Azure OpenAI embeddings deployment.
    """

    service = "embedding"

    def __init__(
        self,
        client: AzureOpenAI,
        deployment: str,
        dimension: int = 3072,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(client, deployment, max_attempts, backoff_base_seconds, sleep)
        self._dimension = dimension
        self.log.info("AzureOpenAIEmbedder initialized", target_dimension=dimension)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureOpenAIEmbedder":
        return cls(
            client=build_azure_openai_client(settings, settings.AZURE_EMBEDDING_TIMEOUT_SECONDS),
            deployment=settings.AZURE_OPENAI_EMBEDDING_DEPLOYMENT,
            dimension=settings.EMBEDDING_DIMENSION,
            max_attempts=settings.UPSTREAM_MAX_ATTEMPTS,
            backoff_base_seconds=settings.UPSTREAM_BACKOFF_BASE_SECONDS,
        )

    def embed(self, text: str) -> List[float]:
        if not text:
            raise RequestValidationError("text to embed must not be empty")
        return self._invoke(lambda: self._embed_once(text))

    def _embed_once(self, text: str) -> List[float]:
        response = self._client.embeddings.create(model=self._deployment, input=text)

        data = getattr(response, "data", None)
        if not data:
            raise self._malformed("embedding response missing data")
        embedding = getattr(data[0], "embedding", None)
        if not isinstance(embedding, list):
            raise self._malformed("embedding format invalid")
        if len(embedding) != self._dimension:
            raise self._malformed(f"unexpected embedding dimension: {len(embedding)}")

        self.log.debug("Embedding generated", dimension=len(embedding))
        return [float(value) for value in embedding]
