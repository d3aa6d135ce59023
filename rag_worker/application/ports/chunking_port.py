from abc import ABC, abstractmethod
from typing import List

from rag_worker.domain.models import Chunk


class ChunkingPort(ABC):
    """
    Interface (Port) for splitting document text into chunks.
    """

    @abstractmethod
    def chunk(self, text: str) -> List[Chunk]:
        """
        Splits a block of text into ordered, overlapping chunks.

        Args:
            text: The text to split.

        Returns:
            Chunks with consecutive zero-based sequence numbers. Empty input
            yields an empty list.
        """
        pass
