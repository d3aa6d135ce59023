"""Unit tests for the fixed-window text chunker."""

import hashlib

import pytest

from rag_worker.domain.exceptions import ChunkingConfigError
from rag_worker.infrastructure.chunkers.text_chunker import TextChunker, content_digest


def _reassemble(chunks, overlap):
    text = chunks[0].content
    for chunk in chunks[1:]:
        text += chunk.content[overlap:]
    return text


def test_empty_text_yields_no_chunks():
    assert TextChunker().chunk("") == []


def test_short_text_is_a_single_chunk():
    chunks = TextChunker(chunk_size=800, chunk_overlap=150).chunk("hello world")
    assert len(chunks) == 1
    assert chunks[0].seq_no == 0
    assert chunks[0].content == "hello world"


def test_windows_advance_by_size_minus_overlap():
    text = "abcdefghijklmnopqrstuvwxyz"
    chunks = TextChunker(chunk_size=10, chunk_overlap=3).chunk(text)

    assert [c.content for c in chunks] == [
        "abcdefghij",
        "hijklmnopq",
        "opqrstuvwx",
        "vwxyz",
    ]
    assert [c.seq_no for c in chunks] == [0, 1, 2, 3]


def test_default_window_on_2000_characters():
    text = "".join(chr(ord("a") + i % 26) for i in range(2000))
    chunks = TextChunker().chunk(text)

    assert [len(c.content) for c in chunks] == [800, 800, 700]
    assert chunks[1].content == text[650:1450]
    assert chunks[2].content == text[1300:2000]


@pytest.mark.parametrize("size,overlap", [(10, 0), (10, 3), (7, 6), (800, 150)])
def test_chunks_cover_text_exactly(size, overlap):
    text = "The quick brown fox jumps over the lazy dog. " * 40
    chunks = TextChunker(chunk_size=size, chunk_overlap=overlap).chunk(text)

    assert all(0 < len(c.content) <= size for c in chunks)
    assert [c.seq_no for c in chunks] == list(range(len(chunks)))
    assert _reassemble(chunks, overlap) == text


def test_text_exactly_one_window_long():
    chunks = TextChunker(chunk_size=5, chunk_overlap=2).chunk("abcde")
    assert [c.content for c in chunks] == ["abcde"]


def test_units_are_characters_and_digest_is_over_utf8():
    text = "héllo wörld ✓"
    chunks = TextChunker(chunk_size=5, chunk_overlap=1).chunk(text)

    assert chunks[0].content == "héllo"
    for chunk in chunks:
        assert chunk.content_sha256 == hashlib.sha256(chunk.content.encode("utf-8")).hexdigest()


def test_content_digest_is_hex_sha256():
    assert content_digest("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


@pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10, -1), (10, 10), (10, 11)])
def test_invalid_configuration_is_rejected(size, overlap):
    with pytest.raises(ChunkingConfigError):
        TextChunker(chunk_size=size, chunk_overlap=overlap)
