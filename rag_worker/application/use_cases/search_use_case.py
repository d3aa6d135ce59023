import structlog

from rag_worker.application.ports.embedding_port import EmbeddingPort
from rag_worker.application.ports.vector_index_port import VectorIndexPort
from rag_worker.domain.exceptions import RequestValidationError
from rag_worker.domain.models import SearchResponse, collection_name_for

log = structlog.get_logger(__name__)


class SearchUseCase:
    """Embeds a query and returns the nearest chunks of one tenant knowledge base."""

    def __init__(self, embedder: EmbeddingPort, vector_index: VectorIndexPort):
        self.embedder = embedder
        self.vector_index = vector_index
        self.log = log.bind(component="SearchUseCase")

    def execute(self, tenant_id: str, kb_id: str, query: str, topk: int) -> SearchResponse:
        if not tenant_id or not kb_id:
            raise RequestValidationError("tenant_id and kb_id are required")
        if not query:
            raise RequestValidationError("field empty: query")
        if topk <= 0:
            raise RequestValidationError("topk must be positive")

        collection = collection_name_for(tenant_id, kb_id)
        search_log = self.log.bind(collection=collection, topk=topk)

        vector = self.embedder.embed(query)
        hits = self.vector_index.search(collection, vector, topk)

        search_log.info("Search completed", num_hits=len(hits))
        return SearchResponse(collection=collection, topk=topk, results=hits)
