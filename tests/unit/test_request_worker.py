"""Request worker tests: result/failure events, retries and commit-after-publish."""

import pytest

from conftest import FakeChat, FakeConsumer, FakeEmbedder, FakeMessage, FakeProducer, FakeVectorIndex
from rag_worker.application.use_cases.answer_use_case import AnswerUseCase
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.domain.exceptions import CollectionNotFoundError, InvalidJSONError, UpstreamModelError
from rag_worker.domain.models import SearchHit
from rag_worker.workers.request_worker import RequestWorker, build_worker_retry_policy, decode_payload

SEARCH_TOPIC = "rag_search_request"
ANSWER_TOPIC = "rag_answer_request"


class ScriptedEmbedder(FakeEmbedder):
    """Raises the queued errors on successive calls, then embeds normally."""

    def __init__(self, errors):
        super().__init__()
        self.errors = list(errors)

    def embed(self, text):
        self.calls.append(text)
        if self.errors:
            raise self.errors.pop(0)
        return [0.1] * self.dimension


def _rate_limited():
    return UpstreamModelError("embedding", "azure embedding failed after retries (status 429)", status_code=429)


def _search_request(**overrides):
    payload = {
        "request_id": "req-1",
        "trace_id": "trace-1",
        "tenant_id": "t",
        "kb_id": "kb",
        "query": "refund policy",
        "topk": 2,
    }
    payload.update(overrides)
    return payload


def _hits():
    return [SearchHit(rank=1, score=0.9, doc_id="d1", seq_no=0, content="alpha")]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_worker(settings, sleeps):
    def factory(embedder=None, index=None, chat=None, consumer=None, producer=None):
        embedder = embedder or FakeEmbedder()
        index = index if index is not None else FakeVectorIndex(hits=_hits())
        search = SearchUseCase(embedder, index)
        answer = AnswerUseCase(search, chat or FakeChat())
        return RequestWorker(
            settings=settings,
            consumer=consumer or FakeConsumer(),
            producer=producer or FakeProducer(),
            search_use_case=search,
            answer_use_case=answer,
            retry_policy=build_worker_retry_policy(settings, sleep=sleeps.append),
        )
    return factory


def test_search_success_publishes_result_and_commits(make_worker):
    worker = make_worker()
    msg = FakeMessage(SEARCH_TOPIC, _search_request())

    assert worker.process_message(msg) is True

    [event] = worker.producer.events
    assert event["topic"] == "rag_search_result"
    assert event["key"] == "req-1"
    assert event["value"] == {
        "request_id": "req-1",
        "trace_id": "trace-1",
        "status": "OK",
        "results": [{"rank": 1, "score": 0.9, "doc_id": "d1", "seq_no": 0, "content": "alpha"}],
    }
    assert worker.consumer.commits == [msg]


def test_answer_success_publishes_answer_and_sources(make_worker):
    worker = make_worker(chat=FakeChat(answer="Within 14 days."))
    payload = _search_request()
    payload["question"] = payload.pop("query")

    assert worker.process_message(FakeMessage(ANSWER_TOPIC, payload)) is True

    [event] = worker.producer.events
    assert event["topic"] == "rag_answer_result"
    assert event["value"]["status"] == "OK"
    assert event["value"]["answer"] == "Within 14 days."
    assert event["value"]["sources"] == [{"doc_id": "d1", "seq_no": 0, "score": 0.9}]


def test_missing_field_is_rejected_without_calling_use_case(make_worker):
    embedder = FakeEmbedder()
    worker = make_worker(embedder=embedder)
    payload = _search_request()
    del payload["tenant_id"]

    worker.process_message(FakeMessage(SEARCH_TOPIC, payload))

    [event] = worker.producer.events
    assert event["topic"] == "rag_failed"
    assert event["value"] == {
        "request_id": "req-1",
        "trace_id": "trace-1",
        "type": "SEARCH",
        "status": "ERROR",
        "error": {"code": "INVALID_REQUEST", "message": "missing field: tenant_id"},
    }
    assert embedder.calls == []
    assert len(worker.consumer.commits) == 1


def test_invalid_json_publishes_failure_with_empty_ids(make_worker):
    worker = make_worker()

    worker.process_message(FakeMessage(SEARCH_TOPIC, b"{not json"))

    [event] = worker.producer.events
    assert event["topic"] == "rag_failed"
    assert event["key"] == ""
    assert event["value"]["request_id"] == ""
    assert event["value"]["error"]["code"] == "INVALID_JSON"
    assert len(worker.consumer.commits) == 1


@pytest.mark.parametrize(
    "topk,message",
    [(0, "topk must be positive"), ("5", "invalid field type: topk")],
)
def test_invalid_topk(make_worker, topk, message):
    worker = make_worker()

    worker.process_message(FakeMessage(SEARCH_TOPIC, _search_request(topk=topk)))

    error = worker.producer.events[0]["value"]["error"]
    assert error == {"code": "INVALID_REQUEST", "message": message}


def test_topk_defaults_to_five(make_worker):
    index = FakeVectorIndex(hits=_hits())
    worker = make_worker(index=index)
    payload = _search_request()
    del payload["topk"]

    worker.process_message(FakeMessage(SEARCH_TOPIC, payload))

    assert index.searches[0]["top_k"] == 5


def test_transient_errors_are_retried_with_linear_backoff(make_worker, sleeps):
    embedder = ScriptedEmbedder([_rate_limited(), _rate_limited()])
    worker = make_worker(embedder=embedder)

    worker.process_message(FakeMessage(SEARCH_TOPIC, _search_request()))

    assert len(embedder.calls) == 3
    assert sleeps == [0.5, 1.0]
    assert worker.producer.events[0]["value"]["status"] == "OK"


def test_exhausted_retries_report_rate_limit(make_worker, sleeps):
    embedder = ScriptedEmbedder([_rate_limited() for _ in range(5)])
    worker = make_worker(embedder=embedder)

    worker.process_message(FakeMessage(SEARCH_TOPIC, _search_request()))

    assert len(embedder.calls) == 3
    assert sleeps == [0.5, 1.0]
    [event] = worker.producer.events
    assert event["topic"] == "rag_failed"
    assert event["value"]["error"]["code"] == "AZURE_RATE_LIMIT"


def test_unauthorized_is_not_retried(make_worker, sleeps):
    embedder = ScriptedEmbedder([UpstreamModelError("embedding", "azure embedding unauthorized (status 403)", status_code=403)])
    worker = make_worker(embedder=embedder)

    worker.process_message(FakeMessage(SEARCH_TOPIC, _search_request()))

    assert len(embedder.calls) == 1
    assert sleeps == []
    assert worker.producer.events[0]["value"]["error"]["code"] == "AZURE_UNAUTHORIZED"


def test_missing_collection_reports_not_found(make_worker, sleeps):
    worker = make_worker(index=FakeVectorIndex(error=CollectionNotFoundError("t__kb")))

    worker.process_message(FakeMessage(SEARCH_TOPIC, _search_request()))

    assert sleeps == []
    assert worker.producer.events[0]["value"]["error"] == {
        "code": "COLLECTION_NOT_FOUND",
        "message": "qdrant collection not found: t__kb",
    }


def test_unknown_topic_is_committed_without_publishing(make_worker):
    worker = make_worker()
    msg = FakeMessage("some_other_topic", _search_request())

    assert worker.process_message(msg) is True

    assert worker.producer.events == []
    assert worker.consumer.commits == [msg]


def test_publish_failure_rewinds_instead_of_committing(make_worker):
    worker = make_worker(producer=FakeProducer(fail=True))
    msg = FakeMessage(SEARCH_TOPIC, _search_request())

    assert worker.process_message(msg) is False

    assert worker.consumer.commits == []
    assert worker.consumer.seeks == [msg]


def test_run_processes_until_stopped(make_worker):
    messages = [
        FakeMessage(SEARCH_TOPIC, _search_request(request_id="a"), offset=0),
        FakeMessage(SEARCH_TOPIC, _search_request(request_id="b"), offset=1),
    ]
    consumer = FakeConsumer(messages)
    worker = make_worker(consumer=consumer)
    consumer.on_idle = worker.stop

    worker.run()

    assert [e["key"] for e in worker.producer.events] == ["a", "b"]
    assert consumer.commits == messages
    assert consumer.closed is True
    assert worker.producer.flushed is True


def test_decode_payload_rejects_non_objects():
    with pytest.raises(InvalidJSONError, match="invalid JSON"):
        decode_payload(b"[1, 2]")
    with pytest.raises(InvalidJSONError):
        decode_payload(None)
    assert decode_payload(b'{"a": 1}') == {"a": 1}


def test_empty_question_is_reported_against_question(make_worker):
    embedder = FakeEmbedder()
    worker = make_worker(embedder=embedder)
    payload = _search_request()
    del payload["query"]
    payload["question"] = ""

    worker.process_message(FakeMessage(ANSWER_TOPIC, payload))

    [event] = worker.producer.events
    assert event["value"]["type"] == "ANSWER"
    assert event["value"]["error"] == {"code": "INVALID_REQUEST", "message": "field empty: question"}
    assert embedder.calls == []
