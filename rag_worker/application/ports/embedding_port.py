import abc
from typing import List


class EmbeddingPort(abc.ABC):
    """
    Abstract port defining the interface for an embedding model.
    """

    @abc.abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Generates the embedding of a single text.

        Raises:
            UpstreamModelError: If the endpoint fails or returns an unusable body.
        """
        raise NotImplementedError
