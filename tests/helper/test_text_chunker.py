"""Unit tests for TextChunker."""

import pytest

from shared.helper.TextChunker import TextChunker
from shared.models.errors import ConfigurationError

SAMPLE_TEXTS = [
    "The quick brown fox jumps over the lazy dog",
    "First sentence here. Second sentence follows! Third one? Yes.\n\nNew paragraph with more words in it.",
    "x" * 137,
    "line one\nline two\nline three\nline four\nline five\nline six\nline seven",
    "Ünïcödé wörds 日本語のテキスト。次の文です。 mixed with ascii text and more text",
]


def _reconstruct(chunks: list[str], overlap: int) -> str:
    return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])


@pytest.mark.parametrize("text", SAMPLE_TEXTS)
@pytest.mark.parametrize("max_size,overlap", [(20, 5), (16, 0), (50, 10), (9, 8)])
def test_chunks_cover_text_without_gaps(text, max_size, overlap):
    """Test that chunks, minus their overlap, reconstruct the full text."""
    chunker = TextChunker(max_size, overlap)

    chunks = chunker.split(text)

    assert chunks
    assert _reconstruct(chunks, overlap) == text
    assert all(len(chunk) <= max_size for chunk in chunks)


def test_consecutive_chunks_share_overlap():
    """Test that each chunk starts with the last `overlap` characters of the previous one."""
    chunker = TextChunker(20, 5)

    chunks = chunker.split("The quick brown fox jumps over the lazy dog")

    assert len(chunks) >= 2
    for previous, current in zip(chunks, chunks[1:]):
        assert current[:5] == previous[-5:]


def test_prefers_word_boundaries():
    """Test that a cut lands after whitespace when one is available."""
    chunker = TextChunker(20, 5)

    chunks = chunker.split("The quick brown fox jumps over the lazy dog")

    assert chunks[0] == "The quick brown fox "


def test_short_text_is_single_chunk():
    chunker = TextChunker(100, 10)

    assert chunker.split("short note") == ["short note"]


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
def test_empty_text_yields_no_chunks(text):
    assert TextChunker(20, 5).split(text) == []


@pytest.mark.parametrize("max_size,overlap", [(0, 0), (-5, 0), (10, 10), (10, 11), (10, -1)])
def test_invalid_sizes_are_rejected(max_size, overlap):
    """Test that invalid sizes raise instead of being clamped."""
    with pytest.raises(ConfigurationError):
        TextChunker(max_size, overlap)


def test_split_sections_tracks_heading_path():
    """Test that sections carry the path of their enclosing headings."""
    text = "Intro text.\n# Project\nAbout it.\n## Notes\nSome notes.\n# Other\nElse.\n"
    chunker = TextChunker(200, 20)

    sections = chunker.split_sections(text)

    assert [s.heading_context for s in sections] == ["", "Project", "Project > Notes", "Other"]
    assert sections[0].block_type == "paragraph"
    assert sections[2].block_type == "heading"
    assert "".join(s.text for s in sections) == text


def test_split_sections_ignores_headings_in_code_fences():
    text = "# Code\n```\n# not a heading\n```\n"
    chunker = TextChunker(200, 20)

    sections = chunker.split_sections(text)

    assert len(sections) == 1
    assert sections[0].heading_context == "Code"
