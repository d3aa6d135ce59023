from abc import ABC, abstractmethod
from typing import List, Optional

from rag_worker.domain.models import Chunk, Document


class DocumentStorePort(ABC):
    """
    Relational record of document lifecycle status and derived chunks.

    Every write is a single atomic unit against the backing store. Failures
    surface as DocumentStoreError and are never retried here.
    """

    @abstractmethod
    def ensure_exists(self, doc_id: str, tenant_id: str, kb_id: str) -> None:
        """Inserts the document as PENDING with chunk_count 0 unless it already exists."""
        raise NotImplementedError

    @abstractmethod
    def mark_processing(self, doc_id: str) -> bool:
        """
        Claims the document for processing.

        Moves the status to PROCESSING only if it is currently PENDING or ERROR.
        Returns True when this call performed the transition; concurrent callers
        for the same document see at most one True.
        """
        raise NotImplementedError

    @abstractmethod
    def mark_ready(self, doc_id: str, chunk_count: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def mark_error(self, doc_id: str, message: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def reset_to_pending(self, doc_id: str) -> None:
        """Deletes the document's chunks and resets it to PENDING with chunk_count 0."""
        raise NotImplementedError

    @abstractmethod
    def upsert_chunks(self, doc_id: str, tenant_id: str, kb_id: str, chunks: List[Chunk]) -> None:
        """Writes chunk rows (ignoring existing (doc_id, seq_no)) and marks the document READY in one transaction."""
        raise NotImplementedError

    @abstractmethod
    def fetch_document(self, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    def fetch_chunks(self, doc_id: str) -> List[Chunk]:
        raise NotImplementedError

    @abstractmethod
    def has_chunks(self, doc_id: str) -> bool:
        raise NotImplementedError
