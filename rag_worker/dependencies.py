# File: rag_worker/dependencies.py
from typing import Optional

from sqlalchemy import Engine

from rag_worker.application.ports.document_store_port import DocumentStorePort
from rag_worker.application.ports.embedding_port import EmbeddingPort
from rag_worker.application.ports.vector_index_port import VectorIndexPort
from rag_worker.application.use_cases.answer_use_case import AnswerUseCase
from rag_worker.application.use_cases.index_document_use_case import IndexDocumentUseCase
from rag_worker.application.use_cases.ingest_document_use_case import IngestDocumentUseCase
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.core.config import Settings
from rag_worker.infrastructure.chunkers.text_chunker import TextChunker
from rag_worker.infrastructure.db.postgres_document_store import PostgresDocumentStore, build_engine
from rag_worker.infrastructure.llm.azure_openai_chat import AzureOpenAIChat
from rag_worker.infrastructure.llm.azure_openai_embedder import AzureOpenAIEmbedder
from rag_worker.infrastructure.messaging.kafka_clients import KafkaConsumerClient, KafkaProducerClient
from rag_worker.infrastructure.storage.s3_object_store import S3ObjectStore
from rag_worker.infrastructure.vectorstores.qdrant_index import QdrantVectorIndex
from rag_worker.workers.ingest_worker import IngestWorker
from rag_worker.workers.request_worker import RequestWorker


def get_document_store(settings: Settings, engine: Optional[Engine] = None) -> PostgresDocumentStore:
    return PostgresDocumentStore(engine or build_engine(settings))


def get_ingest_document_use_case(
    settings: Settings, document_store: Optional[DocumentStorePort] = None
) -> IngestDocumentUseCase:
    """Wires the ingestion pipeline with the PostgreSQL store, S3 and the text chunker."""
    return IngestDocumentUseCase(
        document_store=document_store or get_document_store(settings),
        object_store=S3ObjectStore.from_settings(settings),
        chunker=TextChunker(chunk_size=settings.CHUNK_SIZE, chunk_overlap=settings.CHUNK_OVERLAP),
        supported_content_types=settings.SUPPORTED_CONTENT_TYPES,
    )


def get_search_use_case(
    settings: Settings,
    embedder: Optional[EmbeddingPort] = None,
    vector_index: Optional[VectorIndexPort] = None,
) -> SearchUseCase:
    return SearchUseCase(
        embedder=embedder or AzureOpenAIEmbedder.from_settings(settings),
        vector_index=vector_index or QdrantVectorIndex.from_settings(settings),
    )


def get_answer_use_case(settings: Settings, search_use_case: Optional[SearchUseCase] = None) -> AnswerUseCase:
    return AnswerUseCase(
        search_use_case=search_use_case or get_search_use_case(settings),
        chat=AzureOpenAIChat.from_settings(settings),
    )


def get_index_document_use_case(settings: Settings) -> IndexDocumentUseCase:
    return IndexDocumentUseCase(
        document_store=get_document_store(settings),
        embedder=AzureOpenAIEmbedder.from_settings(settings),
        vector_index=QdrantVectorIndex.from_settings(settings),
    )


def get_ingest_worker(settings: Settings) -> IngestWorker:
    consumer = KafkaConsumerClient(
        settings,
        group_id=settings.KAFKA_INGEST_CONSUMER_GROUP_ID,
        topics=[settings.KAFKA_INGEST_TOPIC],
    )
    return IngestWorker(consumer=consumer, use_case=get_ingest_document_use_case(settings))


def get_request_worker(settings: Settings) -> RequestWorker:
    # Search and answer share one embedder and one Qdrant client.
    search_use_case = get_search_use_case(settings)
    consumer = KafkaConsumerClient(
        settings,
        group_id=settings.KAFKA_WORKER_CONSUMER_GROUP_ID,
        topics=[settings.KAFKA_SEARCH_REQUEST_TOPIC, settings.KAFKA_ANSWER_REQUEST_TOPIC],
    )
    return RequestWorker(
        settings=settings,
        consumer=consumer,
        producer=KafkaProducerClient(settings),
        search_use_case=search_use_case,
        answer_use_case=get_answer_use_case(settings, search_use_case=search_use_case),
    )
