# File: rag_worker/infrastructure/vectorstores/qdrant_index.py
from typing import Any, Dict, List

import httpx
import structlog
from qdrant_client import QdrantClient
from qdrant_client.http import models as qmodels
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from rag_worker.application.ports.vector_index_port import VectorIndexPort
from rag_worker.core.config import Settings
from rag_worker.domain.exceptions import CollectionNotFoundError, VectorIndexError
from rag_worker.domain.models import SearchHit

log = structlog.get_logger(__name__)


class QdrantVectorIndex(VectorIndexPort):
    """
    Vector index backed by Qdrant. Collections use cosine distance.
    """

    def __init__(self, client: QdrantClient, dimension: int = 3072):
        self._client = client
        self._dimension = dimension
        self.log = log.bind(component="QdrantVectorIndex")

    @classmethod
    def from_settings(cls, settings: Settings) -> "QdrantVectorIndex":
        client = QdrantClient(url=settings.QDRANT_URL, timeout=settings.QDRANT_TIMEOUT_SECONDS)
        return cls(client, dimension=settings.EMBEDDING_DIMENSION)

    def search(self, collection: str, vector: List[float], top_k: int) -> List[SearchHit]:
        if top_k <= 0:
            raise VectorIndexError("qdrant search requires top_k > 0")

        search_log = self.log.bind(collection=collection, top_k=top_k)
        try:
            response = self._client.query_points(
                collection_name=collection,
                query=vector,
                limit=top_k,
                with_payload=True,
            )
        except UnexpectedResponse as e:
            if e.status_code == 404:
                search_log.warning("Qdrant collection not found")
                raise CollectionNotFoundError(collection) from e
            search_log.error("Qdrant search failed", status_code=e.status_code, error=str(e))
            raise VectorIndexError(
                f"qdrant search failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except (ResponseHandlingException, httpx.TransportError) as e:
            search_log.error("Qdrant unreachable", error=str(e))
            raise VectorIndexError(f"qdrant search failed: {e}", transient=True) from e

        hits = [self._to_hit(rank, point) for rank, point in enumerate(response.points, start=1)]
        search_log.debug("Qdrant search completed", num_hits=len(hits))
        return hits

    @staticmethod
    def _to_hit(rank: int, point: qmodels.ScoredPoint) -> SearchHit:
        if point.score is None:
            raise VectorIndexError("qdrant search result missing score")
        payload = point.payload
        if not isinstance(payload, dict):
            raise VectorIndexError("qdrant search result missing payload")
        doc_id = payload.get("doc_id")
        if not isinstance(doc_id, str):
            raise VectorIndexError("qdrant payload missing doc_id")
        seq_no = payload.get("seq_no")
        if not isinstance(seq_no, int) or isinstance(seq_no, bool):
            raise VectorIndexError("qdrant payload missing seq_no")
        content = payload.get("content")
        if not isinstance(content, str):
            raise VectorIndexError("qdrant payload missing content")
        return SearchHit(rank=rank, score=float(point.score), doc_id=doc_id, seq_no=seq_no, content=content)

    def ensure_collection(self, collection: str) -> None:
        try:
            if self._client.collection_exists(collection_name=collection):
                return
            self._client.create_collection(
                collection_name=collection,
                vectors_config=qmodels.VectorParams(size=self._dimension, distance=qmodels.Distance.COSINE),
            )
        except UnexpectedResponse as e:
            raise VectorIndexError(
                f"failed to create qdrant collection {collection}: status {e.status_code}", status_code=e.status_code
            ) from e
        except (ResponseHandlingException, httpx.TransportError) as e:
            raise VectorIndexError(f"qdrant collection check failed: {e}", transient=True) from e
        self.log.info("Qdrant collection created", collection=collection, dimension=self._dimension)

    def upsert_point(self, collection: str, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        try:
            self._client.upsert(
                collection_name=collection,
                points=[qmodels.PointStruct(id=point_id, vector=vector, payload=payload)],
                wait=True,
            )
        except UnexpectedResponse as e:
            if e.status_code == 404:
                raise CollectionNotFoundError(collection) from e
            raise VectorIndexError(
                f"qdrant upsert failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except (ResponseHandlingException, httpx.TransportError) as e:
            raise VectorIndexError(f"qdrant upsert failed: {e}", transient=True) from e
