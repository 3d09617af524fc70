"""Tests for the plain substring search."""

import pytest
import pytest_asyncio

from services.search.LexicalSearchService import LexicalSearchService


@pytest_asyncio.fixture
async def lexical(helper_config, document_source):
    return LexicalSearchService(helper_config=helper_config, document_source=document_source)


@pytest.mark.asyncio
async def test_title_beats_tag_beats_content(lexical, save_document):
    """Test match precedence and that each document appears once."""
    await save_document("a", "The garden needs water.", title="Garden Plans", tags=["gardening"])
    await save_document("b", "Nothing relevant here.", title="Shopping", tags=["Gardening"])
    await save_document("c", "A garden.", title="Misc")
    await save_document("d", "Unrelated text.", title="Taxes")
    await lexical.do_load()

    results = lexical.search("GARDEN")

    assert [(r.id, r.snippet) for r in results] == [
        ("a", "Title match"),
        ("b", "Tag: Gardening"),
        ("c", "A garden."),
    ]


@pytest.mark.asyncio
async def test_content_snippet_window(lexical, save_document):
    content = "Some notes written long ago about the Garden behind the old house, and more text after it."
    await save_document("doc1", content, title="Notes")
    await lexical.do_load()

    snippet = lexical.search("garden")[0].snippet

    assert snippet.startswith("...")
    assert snippet.endswith("...")
    assert "about the Garden behind the old house" in snippet
    assert "Some notes" not in snippet


@pytest.mark.asyncio
async def test_snippet_collapses_whitespace(lexical, save_document):
    await save_document("doc1", "first line\n\n   second   line", title="Notes")
    await lexical.do_load()

    assert lexical.search("second")[0].snippet == "first line second line"


@pytest.mark.asyncio
async def test_blank_query_returns_nothing(lexical, save_document):
    await save_document("doc1", "text")
    await lexical.do_load()

    assert lexical.search("   ") == []


@pytest.mark.asyncio
async def test_refresh_and_remove(lexical, save_document, document_source):
    """Test that saves and deletes after loading are reflected."""
    await lexical.do_load()
    await save_document("doc1", "new moon", title="Sky")

    await lexical.do_refresh_document("doc1")
    assert [r.id for r in lexical.search("moon")] == ["doc1"]

    await document_source.do_delete_document("doc1")
    await lexical.do_refresh_document("doc1")
    assert lexical.search("moon") == []
