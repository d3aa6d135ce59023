# File: rag_worker/infrastructure/db/postgres_document_store.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import (
    Column, DateTime, Engine, Index, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text,
    create_engine, delete, exists, select, text, update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from rag_worker.application.ports.document_store_port import DocumentStorePort
from rag_worker.core.config import Settings
from rag_worker.domain.exceptions import DocumentStoreError
from rag_worker.domain.models import Chunk, Document, DocumentStatus

log = structlog.get_logger(__name__)

_metadata = MetaData()

kb_document_table = Table(
    'kb_document',
    _metadata,
    Column('id', String(255), primary_key=True),
    Column('tenant_id', String(255), nullable=False),
    Column('kb_id', String(255), nullable=False),
    Column('status', String(32), nullable=False),
    Column('chunk_count', Integer, nullable=False, default=0),
    Column('error_message', Text),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Index('idx_kb_document_tenant_kb', 'tenant_id', 'kb_id'),
)

kb_chunk_table = Table(
    'kb_chunk',
    _metadata,
    Column('doc_id', String(255), nullable=False),
    Column('tenant_id', String(255), nullable=False),
    Column('kb_id', String(255), nullable=False),
    Column('seq_no', Integer, nullable=False),
    Column('content', Text, nullable=False),
    Column('content_sha256', String(64), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint('doc_id', 'seq_no', name='pk_kb_chunk'),
)

_CLAIMABLE_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.ERROR.value)


def build_engine(settings: Settings) -> Engine:
    """Creates a SQLAlchemy engine and checks connectivity."""
    engine_log = log.bind(component="SyncEngine")
    engine_log.info("Creating SQLAlchemy synchronous engine...")
    try:
        engine = create_engine(
            settings.sqlalchemy_url,
            pool_size=5,
            max_overflow=5,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
        )
        with engine.connect() as conn_test:
            conn_test.execute(text("SELECT 1"))
    except SQLAlchemyError as sa_err:
        engine_log.critical("Failed to create or connect SQLAlchemy engine", error=str(sa_err), exc_info=True)
        raise DocumentStoreError(f"Failed to connect to the document store: {sa_err}") from sa_err
    engine_log.info("SQLAlchemy synchronous engine created and tested successfully.")
    return engine


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PostgresDocumentStore(DocumentStorePort):
    """
    Document and chunk persistence on SQLAlchemy Core.

    Conditional transitions are single ``UPDATE ... WHERE ... RETURNING``
    statements so concurrent workers rely on the database for mutual exclusion.
    The PostgreSQL and SQLite dialects are supported for ``ON CONFLICT`` inserts.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.log = log.bind(component="PostgresDocumentStore")

    def _insert(self, table: Table):
        if self.engine.dialect.name == "sqlite":
            return sqlite_insert(table)
        return pg_insert(table)

    def create_schema(self) -> None:
        try:
            _metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise DocumentStoreError(f"Schema creation failed: {e}") from e
        self.log.info("Document store schema ensured.", tables=sorted(_metadata.tables))

    def ensure_exists(self, doc_id: str, tenant_id: str, kb_id: str) -> None:
        now = _utcnow()
        stmt = self._insert(kb_document_table).values(
            id=doc_id,
            tenant_id=tenant_id,
            kb_id=kb_id,
            status=DocumentStatus.PENDING.value,
            chunk_count=0,
            error_message=None,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=['id'])
        self._execute(stmt, "ensure_exists", doc_id)

    def mark_processing(self, doc_id: str) -> bool:
        stmt = (
            update(kb_document_table)
            .where(kb_document_table.c.id == doc_id)
            .where(kb_document_table.c.status.in_(_CLAIMABLE_STATUSES))
            .values(status=DocumentStatus.PROCESSING.value, error_message=None, updated_at=_utcnow())
            .returning(kb_document_table.c.id)
        )
        try:
            with self.engine.begin() as connection:
                claimed = connection.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            self.log.error("SQLAlchemyError during mark_processing", document_id=doc_id, error=str(e), exc_info=True)
            raise DocumentStoreError(f"mark_processing failed: {e}") from e
        self.log.debug("mark_processing executed", document_id=doc_id, claimed=claimed)
        return claimed

    def mark_ready(self, doc_id: str, chunk_count: int) -> None:
        stmt = (
            update(kb_document_table)
            .where(kb_document_table.c.id == doc_id)
            .values(
                status=DocumentStatus.READY.value,
                chunk_count=chunk_count,
                error_message=None,
                updated_at=_utcnow(),
            )
        )
        self._execute(stmt, "mark_ready", doc_id)

    def mark_error(self, doc_id: str, message: str) -> None:
        stmt = (
            update(kb_document_table)
            .where(kb_document_table.c.id == doc_id)
            .values(status=DocumentStatus.ERROR.value, error_message=message, updated_at=_utcnow())
        )
        self._execute(stmt, "mark_error", doc_id)

    def reset_to_pending(self, doc_id: str) -> None:
        try:
            with self.engine.begin() as connection:
                connection.execute(delete(kb_chunk_table).where(kb_chunk_table.c.doc_id == doc_id))
                connection.execute(
                    update(kb_document_table)
                    .where(kb_document_table.c.id == doc_id)
                    .values(
                        status=DocumentStatus.PENDING.value,
                        chunk_count=0,
                        error_message=None,
                        updated_at=_utcnow(),
                    )
                )
        except SQLAlchemyError as e:
            self.log.error("SQLAlchemyError during reset_to_pending", document_id=doc_id, error=str(e), exc_info=True)
            raise DocumentStoreError(f"reset_to_pending failed: {e}") from e
        self.log.info("Document reset to PENDING and chunks removed.", document_id=doc_id)

    def upsert_chunks(self, doc_id: str, tenant_id: str, kb_id: str, chunks: List[Chunk]) -> None:
        upsert_log = self.log.bind(document_id=doc_id, num_chunks=len(chunks))
        now = _utcnow()
        rows: List[Dict[str, Any]] = [
            {
                "doc_id": doc_id,
                "tenant_id": tenant_id,
                "kb_id": kb_id,
                "seq_no": chunk.seq_no,
                "content": chunk.content,
                "content_sha256": chunk.content_sha256,
                "created_at": now,
            }
            for chunk in chunks
        ]
        try:
            with self.engine.begin() as connection:
                if rows:
                    stmt = self._insert(kb_chunk_table).values(rows).on_conflict_do_nothing(
                        index_elements=['doc_id', 'seq_no']
                    )
                    connection.execute(stmt)
                connection.execute(
                    update(kb_document_table)
                    .where(kb_document_table.c.id == doc_id)
                    .values(
                        status=DocumentStatus.READY.value,
                        chunk_count=len(chunks),
                        error_message=None,
                        updated_at=now,
                    )
                )
        except SQLAlchemyError as e:
            upsert_log.error("SQLAlchemyError during chunk upsert", error=str(e), exc_info=True)
            raise DocumentStoreError(f"upsert_chunks failed: {e}") from e
        upsert_log.info("Chunks persisted and document marked READY.")

    def fetch_document(self, doc_id: str) -> Optional[Document]:
        stmt = select(kb_document_table).where(kb_document_table.c.id == doc_id)
        try:
            with self.engine.connect() as connection:
                row = connection.execute(stmt).mappings().first()
        except SQLAlchemyError as e:
            raise DocumentStoreError(f"fetch_document failed: {e}") from e
        if row is None:
            return None
        return Document(
            id=row["id"],
            tenant_id=row["tenant_id"],
            kb_id=row["kb_id"],
            status=DocumentStatus(row["status"]),
            chunk_count=row["chunk_count"] or 0,
            error_message=row["error_message"],
            updated_at=row["updated_at"],
        )

    def fetch_chunks(self, doc_id: str) -> List[Chunk]:
        stmt = (
            select(kb_chunk_table.c.seq_no, kb_chunk_table.c.content, kb_chunk_table.c.content_sha256)
            .where(kb_chunk_table.c.doc_id == doc_id)
            .order_by(kb_chunk_table.c.seq_no.asc())
        )
        try:
            with self.engine.connect() as connection:
                rows = connection.execute(stmt).all()
        except SQLAlchemyError as e:
            raise DocumentStoreError(f"fetch_chunks failed: {e}") from e
        return [Chunk(seq_no=row.seq_no, content=row.content, content_sha256=row.content_sha256) for row in rows]

    def has_chunks(self, doc_id: str) -> bool:
        stmt = select(exists().where(kb_chunk_table.c.doc_id == doc_id))
        try:
            with self.engine.connect() as connection:
                return bool(connection.execute(stmt).scalar())
        except SQLAlchemyError as e:
            raise DocumentStoreError(f"has_chunks failed: {e}") from e

    def _execute(self, stmt, operation: str, doc_id: str) -> None:
        try:
            with self.engine.begin() as connection:
                connection.execute(stmt)
        except SQLAlchemyError as e:
            self.log.error(f"SQLAlchemyError during {operation}", document_id=doc_id, error=str(e), exc_info=True)
            raise DocumentStoreError(f"{operation} failed: {e}") from e
        self.log.debug(f"{operation} executed", document_id=doc_id)
