import time
from typing import Iterable, Optional

import structlog

from rag_worker.application.ports.chunking_port import ChunkingPort
from rag_worker.application.ports.document_store_port import DocumentStorePort
from rag_worker.application.ports.object_store_port import ObjectStorePort
from rag_worker.core.metrics import CHUNKS_PERSISTED_TOTAL, INGEST_DURATION_SECONDS, INGEST_OUTCOMES_TOTAL
from rag_worker.domain.exceptions import UnsupportedContentTypeError
from rag_worker.domain.models import DocumentStatus, IngestEvent, IngestOutcome

log = structlog.get_logger(__name__)

DEFAULT_SUPPORTED_CONTENT_TYPES = ("text/plain",)


class IngestDocumentUseCase:
    """
    Drives one ingest event through the document state machine.

    Concurrent or duplicate deliveries are resolved by the store's conditional
    claim: only the caller that moves the document to PROCESSING fetches and
    chunks it. Failures after the claim leave the document in ERROR, from
    which a later delivery may claim it again.
    """

    def __init__(
        self,
        document_store: DocumentStorePort,
        object_store: ObjectStorePort,
        chunker: ChunkingPort,
        supported_content_types: Optional[Iterable[str]] = None,
    ):
        self.document_store = document_store
        self.object_store = object_store
        self.chunker = chunker
        self.supported_content_types = frozenset(supported_content_types or DEFAULT_SUPPORTED_CONTENT_TYPES)
        self.log = log.bind(component="IngestDocumentUseCase")

    def execute(self, event: IngestEvent) -> IngestOutcome:
        start_time = time.perf_counter()
        use_case_log = self.log.bind(
            document_id=event.doc_id,
            tenant_id=event.tenant_id,
            kb_id=event.kb_id,
            trace_id=event.trace_id,
        )
        use_case_log.info("Starting document ingestion")

        outcome = self._run(event, use_case_log)

        INGEST_OUTCOMES_TOTAL.labels(outcome=outcome.value).inc()
        INGEST_DURATION_SECONDS.observe(time.perf_counter() - start_time)
        use_case_log.info(
            "Document ingestion finished",
            outcome=outcome.value,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return outcome

    def _run(self, event: IngestEvent, use_case_log) -> IngestOutcome:
        store = self.document_store
        doc_id = event.doc_id

        store.ensure_exists(doc_id, event.tenant_id, event.kb_id)

        document = store.fetch_document(doc_id)
        status = document.status if document else DocumentStatus.PENDING

        if status == DocumentStatus.READY and not store.has_chunks(doc_id):
            use_case_log.warning("Document is READY without chunks; resetting to PENDING")
            store.reset_to_pending(doc_id)
            status = DocumentStatus.PENDING

        if status == DocumentStatus.READY:
            use_case_log.info("Document already READY; skipping")
            return IngestOutcome.SKIPPED_READY
        if status == DocumentStatus.PROCESSING:
            use_case_log.info("Document is being processed by another worker; skipping")
            return IngestOutcome.SKIPPED_PROCESSING

        if not store.mark_processing(doc_id):
            use_case_log.info("Lost the processing claim to another worker; skipping")
            return IngestOutcome.SKIPPED_CLAIM_LOST

        use_case_log.info("Document claimed for processing")
        try:
            chunk_count = self._process_claimed(event, use_case_log)
        except Exception as e:
            use_case_log.error("Document processing failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            try:
                store.mark_error(doc_id, str(e))
            except Exception as mark_err:
                # Redeliveries skip a PROCESSING document; it needs a manual reset_to_pending.
                use_case_log.critical(
                    "Could not record processing failure; document left in PROCESSING",
                    document_status=DocumentStatus.PROCESSING.value,
                    processing_error=str(e),
                    error=str(mark_err),
                )
                INGEST_OUTCOMES_TOTAL.labels(outcome=IngestOutcome.FAILED.value).inc()
                raise
            return IngestOutcome.FAILED

        CHUNKS_PERSISTED_TOTAL.labels(tenant_id=event.tenant_id).inc(chunk_count)
        return IngestOutcome.PROCESSED

    def _process_claimed(self, event: IngestEvent, use_case_log) -> int:
        if event.content_type not in self.supported_content_types:
            raise UnsupportedContentTypeError(f"unsupported content_type: {event.content_type}")

        raw = self.object_store.fetch_bytes(event.object_key)
        text = raw.decode("utf-8")
        if not text:
            raise ValueError("document contains no text")

        chunks = self.chunker.chunk(text)
        use_case_log.info("Document chunked", text_length=len(text), num_chunks=len(chunks))

        self.document_store.upsert_chunks(event.doc_id, event.tenant_id, event.kb_id, chunks)
        return len(chunks)
