"""Pydantic models for engine status, rebuild progress and provider checks."""

from pydantic import BaseModel

from shared.models.config import EmbeddingConfig


class RAGStatus(BaseModel):
    enabled: bool = False
    indexed_docs: int = 0
    indexed_bookmarks: int = 0
    indexed_files: int = 0
    indexed_folders: int = 0
    total_docs: int = 0
    last_index_time: float | None = None
    rebuilding: bool = False
    embed_model: str = ""
    error: str | None = None


class ReindexProgress(BaseModel):
    """Progress of a full rebuild, emitted after each processed item."""

    phase: str  # documents | external
    current: int
    total: int


class RebuildResult(BaseModel):
    documents: int = 0
    external: int = 0
    failed: int = 0
    errors: list[str] = []
    aborted: bool = False
    duration_seconds: float = 0.0
    error: str | None = None


class TestConnectionResult(BaseModel):
    __test__ = False  # not a pytest class

    success: bool
    dimension: int = 0
    error: str | None = None


class ModelListResult(BaseModel):
    models: list[str] = []
    error: str | None = None


class ConfigSaveResult(BaseModel):
    config: EmbeddingConfig
    index_reset: bool = False
    error: str | None = None
