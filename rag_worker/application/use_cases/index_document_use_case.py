import structlog

from rag_worker.application.ports.document_store_port import DocumentStorePort
from rag_worker.application.ports.embedding_port import EmbeddingPort
from rag_worker.application.ports.vector_index_port import VectorIndexPort
from rag_worker.domain.exceptions import RequestValidationError
from rag_worker.domain.models import DocumentStatus, collection_name_for, point_id_for

log = structlog.get_logger(__name__)


class IndexDocumentUseCase:
    """
    Embeds the chunks of a READY document and upserts them into its tenant collection.

    Point ids are derived from (doc_id, seq_no), so re-running overwrites the
    same points.
    """

    def __init__(self, document_store: DocumentStorePort, embedder: EmbeddingPort, vector_index: VectorIndexPort):
        self.document_store = document_store
        self.embedder = embedder
        self.vector_index = vector_index
        self.log = log.bind(component="IndexDocumentUseCase")

    def execute(self, doc_id: str) -> int:
        index_log = self.log.bind(document_id=doc_id)

        document = self.document_store.fetch_document(doc_id)
        if document is None:
            raise RequestValidationError(f"document not found: {doc_id}")
        if not document.tenant_id or not document.kb_id:
            raise RequestValidationError("document missing tenant/kb metadata")
        if document.status != DocumentStatus.READY:
            raise RequestValidationError(f"document status is {document.status.value}, expected READY")

        chunks = self.document_store.fetch_chunks(doc_id)
        if not chunks:
            raise RequestValidationError("no chunks found for document")

        collection = collection_name_for(document.tenant_id, document.kb_id)
        self.vector_index.ensure_collection(collection)

        for chunk in chunks:
            vector = self.embedder.embed(chunk.content)
            payload = {
                "tenant_id": document.tenant_id,
                "kb_id": document.kb_id,
                "doc_id": document.id,
                "seq_no": chunk.seq_no,
                "content": chunk.content,
            }
            self.vector_index.upsert_point(collection, point_id_for(document.id, chunk.seq_no), vector, payload)

        index_log.info("Embedding and vector upsert completed", collection=collection, num_chunks=len(chunks))
        return len(chunks)
