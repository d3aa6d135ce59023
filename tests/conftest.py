"""Shared pytest fixtures and in-memory fakes for the rag-worker ports."""

import json
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy import create_engine

from rag_worker.application.ports.chat_port import ChatCompletionPort
from rag_worker.application.ports.embedding_port import EmbeddingPort
from rag_worker.application.ports.object_store_port import ObjectStorePort
from rag_worker.application.ports.vector_index_port import VectorIndexPort
from rag_worker.core.config import Settings
from rag_worker.domain.exceptions import EventPublishError, ObjectStoreError
from rag_worker.domain.models import SearchHit
from rag_worker.infrastructure.db.postgres_document_store import PostgresDocumentStore


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: tests that exercise a real database engine")


# ── Settings / store ────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, DATABASE_URL="sqlite://")


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rag_worker.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def document_store(sqlite_engine) -> PostgresDocumentStore:
    store = PostgresDocumentStore(sqlite_engine)
    store.create_schema()
    return store


# ── Port fakes ──────────────────────────────────────────────────────────


class FakeObjectStore(ObjectStorePort):
    """Serves objects from a dict and counts fetches."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects = dict(objects or {})
        self.fetches: List[str] = []

    def fetch_bytes(self, object_key: str) -> bytes:
        self.fetches.append(object_key)
        if object_key not in self.objects:
            raise ObjectStoreError(f"Object not found in S3: {object_key}")
        return self.objects[object_key]


class BlockingObjectStore(FakeObjectStore):
    """Blocks inside fetch_bytes until released, signalling when the fetch started."""

    def __init__(self, objects: Dict[str, bytes]):
        super().__init__(objects)
        self.fetch_started = threading.Event()
        self.release = threading.Event()

    def fetch_bytes(self, object_key: str) -> bytes:
        self.fetch_started.set()
        self.release.wait(timeout=10)
        return super().fetch_bytes(object_key)


class FakeEmbedder(EmbeddingPort):
    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return [float(len(text) % 7)] * self.dimension


class FakeVectorIndex(VectorIndexPort):
    def __init__(self, hits: Optional[List[SearchHit]] = None, error: Optional[Exception] = None):
        self.hits = hits or []
        self.error = error
        self.searches: List[Dict[str, Any]] = []
        self.ensured: List[str] = []
        self.points: Dict[str, Dict[str, Any]] = {}

    def search(self, collection: str, vector: List[float], top_k: int) -> List[SearchHit]:
        self.searches.append({"collection": collection, "vector": vector, "top_k": top_k})
        if self.error is not None:
            raise self.error
        return self.hits[:top_k]

    def ensure_collection(self, collection: str) -> None:
        self.ensured.append(collection)

    def upsert_point(self, collection: str, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        self.points[point_id] = {"collection": collection, "vector": vector, "payload": payload}


class FakeChat(ChatCompletionPort):
    def __init__(self, answer: str = "Refunds are issued within 14 days."):
        self.answer = answer
        self.calls: List[Dict[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt})
        return self.answer


# ── Kafka fakes ─────────────────────────────────────────────────────────


class FakeMessage:
    def __init__(self, topic: str, value: Any, partition: int = 0, offset: int = 0):
        self._topic = topic
        if isinstance(value, (dict, list)):
            value = json.dumps(value).encode("utf-8")
        elif isinstance(value, str):
            value = value.encode("utf-8")
        self._value = value
        self._partition = partition
        self._offset = offset

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset

    def value(self):
        return self._value

    def error(self):
        return None


class FakeConsumer:
    """Replays queued messages; calls ``on_idle`` once the queue is empty."""

    def __init__(self, messages: Optional[List[Any]] = None, on_idle: Optional[Callable[[], None]] = None):
        self.messages = list(messages or [])
        self.on_idle = on_idle
        self.commits: List[Any] = []
        self.seeks: List[Any] = []
        self.closed = False

    def poll(self, timeout: Optional[float] = None):
        if self.messages:
            return self.messages.pop(0)
        if self.on_idle is not None:
            self.on_idle()
        return None

    def commit(self, message):
        self.commits.append(message)

    def seek(self, message):
        self.seeks.append(message)

    def close(self):
        self.closed = True


class FakeProducer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[Dict[str, Any]] = []
        self.flushed = False

    def produce_and_wait(self, topic: str, key: str, value: Dict[str, Any], timeout: Optional[float] = None):
        if self.fail:
            raise EventPublishError(f"delivery to {topic} not confirmed before timeout")
        self.events.append({"topic": topic, "key": key, "value": value})

    def flush(self, timeout: float = 10.0):
        self.flushed = True
