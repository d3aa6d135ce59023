import abc
from typing import Any, Dict, List

from rag_worker.domain.models import SearchHit


class VectorIndexPort(abc.ABC):
    """
    Nearest-neighbour index partitioned into named collections.
    """

    @abc.abstractmethod
    def search(self, collection: str, vector: List[float], top_k: int) -> List[SearchHit]:
        """
        Returns up to ``top_k`` hits ranked from 1.

        Raises:
            CollectionNotFoundError: The collection does not exist.
            VectorIndexError: Any other index failure or malformed payload.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def ensure_collection(self, collection: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def upsert_point(self, collection: str, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        raise NotImplementedError
