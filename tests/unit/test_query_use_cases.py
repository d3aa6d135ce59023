"""Search, answer and vector indexing use cases over in-memory ports."""

import pytest

from conftest import FakeChat, FakeEmbedder, FakeVectorIndex
from rag_worker.application.use_cases.answer_use_case import (
    ANSWER_SYSTEM_PROMPT,
    NO_ANSWER_TEXT,
    AnswerUseCase,
    build_user_prompt,
)
from rag_worker.application.use_cases.index_document_use_case import IndexDocumentUseCase
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.domain.exceptions import CollectionNotFoundError, RequestValidationError
from rag_worker.domain.models import SearchHit, point_id_for
from rag_worker.infrastructure.chunkers.text_chunker import TextChunker


def _hits():
    return [
        SearchHit(rank=1, score=0.9, doc_id="d1", seq_no=0, content="alpha"),
        SearchHit(rank=2, score=0.5, doc_id="d2", seq_no=3, content="beta"),
    ]


# ── Search ──────────────────────────────────────────────────────────────


def test_search_targets_tenant_collection():
    embedder = FakeEmbedder()
    index = FakeVectorIndex(hits=_hits())

    response = SearchUseCase(embedder, index).execute("t", "kb", "refund policy", 2)

    assert response.collection == "t__kb"
    assert response.topk == 2
    assert [h.doc_id for h in response.results] == ["d1", "d2"]
    assert embedder.calls == ["refund policy"]
    assert index.searches[0]["collection"] == "t__kb"
    assert index.searches[0]["top_k"] == 2


@pytest.mark.parametrize(
    "tenant_id,kb_id,query,topk,message",
    [
        ("", "kb", "q", 5, "tenant_id and kb_id are required"),
        ("t", "", "q", 5, "tenant_id and kb_id are required"),
        ("t", "kb", "", 5, "field empty: query"),
        ("t", "kb", "q", 0, "topk must be positive"),
    ],
)
def test_search_rejects_invalid_input_without_embedding(tenant_id, kb_id, query, topk, message):
    embedder = FakeEmbedder()
    index = FakeVectorIndex()

    with pytest.raises(RequestValidationError, match=message):
        SearchUseCase(embedder, index).execute(tenant_id, kb_id, query, topk)
    assert embedder.calls == []
    assert index.searches == []


def test_search_propagates_missing_collection():
    index = FakeVectorIndex(error=CollectionNotFoundError("t__kb"))

    with pytest.raises(CollectionNotFoundError) as exc_info:
        SearchUseCase(FakeEmbedder(), index).execute("t", "kb", "q", 5)
    assert str(exc_info.value) == "qdrant collection not found: t__kb"


# ── Answer ──────────────────────────────────────────────────────────────


def test_answer_without_hits_skips_chat():
    chat = FakeChat()
    use_case = AnswerUseCase(SearchUseCase(FakeEmbedder(), FakeVectorIndex(hits=[])), chat)

    response = use_case.execute("t", "kb", "What is the refund window?", 5)

    assert response.answer == NO_ANSWER_TEXT
    assert response.sources == []
    assert chat.calls == []


def test_answer_prompts_with_retrieved_context():
    chat = FakeChat(answer="Within 14 days [doc_id=d1].")
    use_case = AnswerUseCase(SearchUseCase(FakeEmbedder(), FakeVectorIndex(hits=_hits())), chat)

    response = use_case.execute("t", "kb", "What is the refund window?", 5)

    assert response.answer == "Within 14 days [doc_id=d1]."
    assert [(s.doc_id, s.seq_no, s.score) for s in response.sources] == [("d1", 0, 0.9), ("d2", 3, 0.5)]
    assert len(chat.calls) == 1
    assert chat.calls[0]["system"] == ANSWER_SYSTEM_PROMPT
    assert chat.calls[0]["user"] == (
        "[doc_id=d1 seq_no=0 score=0.9]\nalpha\n\n"
        "[doc_id=d2 seq_no=3 score=0.5]\nbeta\n\n"
        "Question:\nWhat is the refund window?"
    )


def test_build_user_prompt_matches_answer_call():
    assert build_user_prompt(_hits()[:1], "Q?") == "[doc_id=d1 seq_no=0 score=0.9]\nalpha\n\nQuestion:\nQ?"


def test_system_prompt_names_the_no_answer_text():
    assert NO_ANSWER_TEXT in ANSWER_SYSTEM_PROMPT


def test_answer_propagates_search_errors():
    chat = FakeChat()
    index = FakeVectorIndex(error=CollectionNotFoundError("t__kb"))

    with pytest.raises(CollectionNotFoundError):
        AnswerUseCase(SearchUseCase(FakeEmbedder(), index), chat).execute("t", "kb", "q", 5)
    assert chat.calls == []


# ── Vector indexing ─────────────────────────────────────────────────────


def _ready_document(document_store, text="one two three four five six seven eight nine ten"):
    chunks = TextChunker(chunk_size=20, chunk_overlap=5).chunk(text)
    document_store.ensure_exists("doc-1", "t", "kb")
    document_store.upsert_chunks("doc-1", "t", "kb", chunks)
    return chunks


def test_index_document_upserts_one_point_per_chunk(document_store):
    chunks = _ready_document(document_store)
    embedder = FakeEmbedder()
    index = FakeVectorIndex()

    count = IndexDocumentUseCase(document_store, embedder, index).execute("doc-1")

    assert count == len(chunks)
    assert index.ensured == ["t__kb"]
    assert set(index.points) == {point_id_for("doc-1", c.seq_no) for c in chunks}
    first = index.points[point_id_for("doc-1", 0)]
    assert first["collection"] == "t__kb"
    assert first["payload"] == {
        "tenant_id": "t",
        "kb_id": "kb",
        "doc_id": "doc-1",
        "seq_no": 0,
        "content": chunks[0].content,
    }
    assert embedder.calls == [c.content for c in chunks]


def test_index_document_is_idempotent(document_store):
    chunks = _ready_document(document_store)
    index = FakeVectorIndex()
    use_case = IndexDocumentUseCase(document_store, FakeEmbedder(), index)

    use_case.execute("doc-1")
    use_case.execute("doc-1")

    assert len(index.points) == len(chunks)


def test_index_document_requires_ready_status(document_store):
    document_store.ensure_exists("doc-1", "t", "kb")

    with pytest.raises(RequestValidationError, match="expected READY"):
        IndexDocumentUseCase(document_store, FakeEmbedder(), FakeVectorIndex()).execute("doc-1")


def test_index_unknown_document(document_store):
    with pytest.raises(RequestValidationError, match="document not found: ghost"):
        IndexDocumentUseCase(document_store, FakeEmbedder(), FakeVectorIndex()).execute("ghost")


def test_point_ids_are_deterministic():
    assert point_id_for("doc-1", 0) == point_id_for("doc-1", 0)
    assert point_id_for("doc-1", 0) != point_id_for("doc-1", 1)
    assert point_id_for("doc-1", 1) != point_id_for("doc-2", 1)


def test_answer_rejects_empty_question_without_searching():
    embedder = FakeEmbedder()
    chat = FakeChat()

    with pytest.raises(RequestValidationError, match="field empty: question"):
        AnswerUseCase(SearchUseCase(embedder, FakeVectorIndex(hits=_hits())), chat).execute("t", "kb", "", 5)
    assert embedder.calls == []
    assert chat.calls == []
