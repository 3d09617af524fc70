"""Shared fixtures: a fake embedding provider behind httpx.MockTransport and booted engine parts on a temp data dir."""

import json
import logging
import re
import zlib

import httpx
import pytest
import pytest_asyncio

from services.rag_index.IndexService import IndexService
from shared.clients.docs.local.DocumentSourceLocal import DocumentSourceLocal
from shared.clients.docs.models.Document import DocumentRecord
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.rag.sqlite.RAGClientSqlite import RAGClientSqlite
from shared.extract.ContentExtractor import ContentExtractor
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.config import EmbeddingConfig

FAKE_DIMENSION = 256
_WORD = re.compile(r"[a-z0-9]+")


def fake_embedding(text: str) -> list[float]:
    """Bag-of-words vector: texts sharing words get a positive cosine similarity."""
    vector = [0.0] * FAKE_DIMENSION
    for word in _WORD.findall(text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % FAKE_DIMENSION] += 1.0
    return vector


class FakeEmbeddingProvider:
    """Ollama-compatible provider plus a tiny web server for bookmark tests."""

    def __init__(self) -> None:
        self.embed_calls: list[list[str]] = []
        self.fail_status: int | None = None
        self.pages: dict[str, tuple[str, str]] = {}  # url -> (content type, body)

    def embedded_texts(self) -> list[str]:
        return [text for call in self.embed_calls for text in call]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in self.pages:
            content_type, body = self.pages[url]
            return httpx.Response(200, headers={"content-type": content_type}, text=body)

        if request.url.path == "/api/embed":
            body = json.loads(request.content)
            self.embed_calls.append(list(body["input"]))
            if self.fail_status is not None:
                return httpx.Response(self.fail_status, json={"error": f"model '{body['model']}' not found"})
            return httpx.Response(
                200,
                json={"model": body["model"], "embeddings": [fake_embedding(t) for t in body["input"]]},
            )
        if request.url.path == "/api/tags":
            return httpx.Response(
                200,
                json={"models": [{"name": "nomic-embed-text:latest"}, {"name": "mxbai-embed-large"}]},
            )
        if request.url.path in ("", "/"):
            return httpx.Response(200, text="Ollama is running")
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def logger() -> ColorLogger:
    return ColorLogger(logging.getLogger("notes_rag_bridge.tests"))


@pytest.fixture
def helper_config(tmp_path, logger) -> HelperConfig:
    return HelperConfig(
        logger=logger,
        overrides={
            "DATA_DIR": str(tmp_path / "data"),
            "INDEX_DEBOUNCE_SECONDS": "0.05",
            "REBUILD_ITEM_TIMEOUT": "10",
        },
    )


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def transport(provider) -> httpx.MockTransport:
    return httpx.MockTransport(provider.handler)


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    return EmbeddingConfig(provider="ollama", base_url="http://ollama.test", model="nomic-embed-text", max_chunk_size=200, overlap=20)


@pytest_asyncio.fixture
async def embed_client(helper_config, embedding_config, transport):
    client = EmbedClientOllama(helper_config=helper_config, embedding_config=embedding_config)
    await client.boot(transport=transport)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def rag_client(helper_config):
    client = RAGClientSqlite(helper_config=helper_config)
    await client.boot()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def document_source(helper_config):
    source = DocumentSourceLocal(helper_config=helper_config)
    await source.boot()
    yield source
    await source.close()


@pytest_asyncio.fixture
async def content_extractor(helper_config, transport):
    extractor = ContentExtractor(helper_config=helper_config)
    await extractor.boot(transport=transport)
    yield extractor
    await extractor.close()


@pytest_asyncio.fixture
async def index_service(helper_config, rag_client, document_source, content_extractor, embedding_config, embed_client):
    service = IndexService(
        helper_config=helper_config,
        rag_client=rag_client,
        document_source=document_source,
        content_extractor=content_extractor,
        embedding_config=embedding_config,
        embed_client=embed_client,
    )
    yield service
    await service.close()


@pytest.fixture
def save_document(document_source):
    """Write a note to the local document source."""

    async def _save(doc_id: str, content: str, title: str = "", tags: list[str] | None = None, blocks: list | None = None):
        doc = DocumentRecord(
            id=doc_id,
            title=title or doc_id,
            content=content,
            tags=tags or [],
            external_blocks=blocks or [],
        )
        await document_source.do_save_document(doc)
        return doc

    return _save
