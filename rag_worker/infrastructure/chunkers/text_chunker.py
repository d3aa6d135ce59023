import hashlib
from typing import List

import structlog

from rag_worker.application.ports.chunking_port import ChunkingPort
from rag_worker.domain.exceptions import ChunkingConfigError
from rag_worker.domain.models import Chunk

log = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 800
DEFAULT_CHUNK_OVERLAP = 150


def content_digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class TextChunker(ChunkingPort):
    """
    Fixed-window character chunker with overlap.

    Each window spans ``[start, min(start + chunk_size, len(text)))``; the next
    window starts ``chunk_overlap`` characters before the previous end.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, chunk_overlap: int = DEFAULT_CHUNK_OVERLAP):
        if chunk_size <= 0:
            raise ChunkingConfigError(f"Chunk size must be positive. Received: {chunk_size}")
        if chunk_overlap < 0:
            raise ChunkingConfigError(f"Chunk overlap must be non-negative. Received: {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise ChunkingConfigError(f"Chunk overlap ({chunk_overlap}) must be less than chunk size ({chunk_size}).")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk(self, text: str) -> List[Chunk]:
        if not text:
            return []

        chunks: List[Chunk] = []
        text_length = len(text)
        start = 0
        while start < text_length:
            end = min(text_length, start + self.chunk_size)
            content = text[start:end]
            chunks.append(Chunk(seq_no=len(chunks), content=content, content_sha256=content_digest(content)))

            if end == text_length:
                break

            next_start = end - self.chunk_overlap if end > self.chunk_overlap else end
            # Guarantees progress on degenerate windows.
            start = next_start if next_start > start else end

        log.debug("Text split into chunks", text_length=text_length, num_chunks=len(chunks))
        return chunks
