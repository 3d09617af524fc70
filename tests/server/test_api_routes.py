"""Tests for the HTTP routes, run in-process against a booted RAGService."""

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from server.routers.DocumentEventRouter import router as document_event_router
from server.routers.EventRouter import format_sse
from server.routers.QueryRouter import router as query_router
from server.routers.RAGRouter import router as rag_router
from services.rag.RAGService import RAGService
from shared.helper.EmbeddingConfigStore import EmbeddingConfigStore
from shared.models.errors import IndexStorageError


@pytest_asyncio.fixture
async def rag_service(helper_config, embedding_config, transport):
    EmbeddingConfigStore(helper_config=helper_config).save(embedding_config)
    service = RAGService(helper_config=helper_config, transport=transport)
    await service.boot()
    yield service
    await service.close()


@pytest_asyncio.fixture
async def client(helper_config, rag_service):
    """HTTP client for an app whose state is set directly, bypassing the lifespan."""
    app = FastAPI()
    app.include_router(document_event_router)
    app.include_router(query_router)
    app.include_router(rag_router)
    app.state.helper_config = helper_config
    app.state.rag_service = rag_service
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http_client:
        yield http_client


@pytest.mark.asyncio
async def test_save_event_then_search(client, rag_service, save_document):
    """Test the host flow: save a note, notify, search it semantically and lexically."""
    await save_document("doc1", "The lighthouse keeper logs every ship.", title="Lighthouse")

    saved = await client.post("/documents/saved", json={"doc_id": "doc1"})
    await rag_service.do_drain()
    semantic = await client.post("/query", json={"query": "lighthouse ship", "limit": 5})
    lexical = await client.post("/query/lexical", json={"query": "keeper"})

    assert saved.status_code == 200
    assert saved.json() == {"status": "accepted", "doc_id": "doc1", "scheduled": True}
    assert semantic.status_code == 200
    assert [r["doc_id"] for r in semantic.json()["results"]] == ["doc1"]
    assert semantic.json()["error"] is None
    assert lexical.json()["results"][0]["id"] == "doc1"


@pytest.mark.asyncio
async def test_delete_event(client, rag_service, save_document, document_source):
    await save_document("doc1", "temporary")
    await client.post("/documents/saved", json={"doc_id": "doc1"})
    await rag_service.do_drain()
    await document_source.do_delete_document("doc1")

    response = await client.post("/documents/deleted", json={"doc_id": "doc1"})

    assert response.json() == {"status": "deleted", "doc_id": "doc1", "removed_chunks": 1, "error": None}


@pytest.mark.asyncio
async def test_delete_event_reports_storage_failure(client, rag_service, monkeypatch):
    async def disk_full(*args, **kwargs):
        raise IndexStorageError("disk full")

    monkeypatch.setattr(rag_service.rag_client, "do_delete_by_document", disk_full)

    response = await client.post("/documents/deleted", json={"doc_id": "doc1"})

    assert response.status_code == 200
    assert response.json() == {"status": "failed", "doc_id": "doc1", "removed_chunks": 0, "error": "disk full"}


@pytest.mark.asyncio
async def test_request_validation(client):
    bad_limit = await client.post("/query", json={"query": "x", "limit": 0})
    bad_threshold = await client.get("/rag/graph", params={"threshold": 1.5})

    assert bad_limit.status_code == 422
    assert bad_threshold.status_code == 422


@pytest.mark.asyncio
async def test_api_key_is_enforced_when_configured(client, helper_config):
    helper_config._overrides["APP_API_KEY"] = "secret"

    missing = await client.get("/rag/status")
    wrong = await client.get("/rag/status", headers={"X-Api-Key": "nope"})
    ok = await client.get("/rag/status", headers={"X-Api-Key": "secret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200


@pytest.mark.asyncio
async def test_config_and_status_routes(client):
    config = await client.get("/rag/config")
    status = await client.get("/rag/status")
    probe = await client.post("/rag/config/test")

    assert config.json()["model"] == "nomic-embed-text"
    assert status.json()["enabled"] is True
    assert probe.json()["success"] is True


@pytest.mark.asyncio
async def test_rebuild_routes(client, rag_service, save_document):
    await save_document("doc1", "first")

    started = await client.post("/rag/rebuild")
    await rag_service.do_drain()
    last = await client.get("/rag/rebuild")
    cancel = await client.delete("/rag/rebuild")

    assert started.status_code == 202
    assert started.json()["status"] == "started"
    assert last.json()["documents"] == 1
    assert cancel.json() == {"cancelled": False}


@pytest.mark.asyncio
async def test_file_block_routes(client, save_document, tmp_path):
    """Test indexing a file block, reading its state and content, and removing it."""
    path = tmp_path / "memo.txt"
    path.write_text("memo about the budget", encoding="utf-8")
    await save_document("doc1", "host")

    indexed = await client.post("/rag/index/file", json={"doc_id": "doc1", "block_id": "blk1", "path": str(path)})
    state = await client.get("/rag/blocks/doc1/blk1")
    content = await client.get("/rag/blocks/doc1/blk1/content")
    removed = await client.delete("/rag/blocks/doc1/blk1")

    assert indexed.json()["chunks"] == 1
    assert indexed.json()["title"] == "memo.txt"
    assert state.json()["indexed"] is True
    assert content.json()["raw_content"] == "memo about the budget"
    assert removed.json() == {"doc_id": "doc1", "block_id": "blk1", "removed_chunks": 1, "error": None}


@pytest.mark.asyncio
async def test_graph_route(client, rag_service, save_document):
    await save_document("a", "red apples", tags=["fruit"])
    await save_document("b", "red apples", tags=["fruit"])
    await client.post("/documents/saved", json={"doc_id": "a"})
    await client.post("/documents/saved", json={"doc_id": "b"})
    await rag_service.do_drain()

    graph = (await client.get("/rag/graph", params={"threshold": 0.5})).json()

    assert {node["id"] for node in graph["nodes"]} == {"a", "b"}
    assert [link["kind"] for link in graph["links"]] == ["both"]


def test_sse_event_format():
    assert format_sse("rag:status-updated", {"enabled": True}) == 'event: rag:status-updated\ndata: {"enabled": true}\n\n'
