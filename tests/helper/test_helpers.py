"""Unit tests for the event bus, the background runner, the config store and HelperConfig."""

import asyncio

import pytest

from shared.helper.BackgroundTaskRunner import BackgroundTaskRunner
from shared.helper.EmbeddingConfigStore import EmbeddingConfigStore
from shared.helper.EventBus import SUBSCRIBER_QUEUE_SIZE, EventBus
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingConfig
from shared.models.errors import ConfigurationError


@pytest.mark.asyncio
async def test_event_bus_fans_out_and_drops_when_full(logger):
    bus = EventBus(logger=logger)
    first = bus.subscribe()
    second = bus.subscribe()

    for i in range(SUBSCRIBER_QUEUE_SIZE + 5):
        bus.publish("rag:status-updated", {"n": i})
    bus.unsubscribe(second)
    bus.publish("rag:block-indexed", {})

    assert first.qsize() == SUBSCRIBER_QUEUE_SIZE
    assert second.qsize() == SUBSCRIBER_QUEUE_SIZE
    assert first.get_nowait() == ("rag:status-updated", {"n": 0})
    assert bus.subscriber_count() == 1


@pytest.mark.asyncio
async def test_runner_records_failures(logger):
    """Test that a failing background task is logged and kept, not lost."""
    runner = BackgroundTaskRunner(logger=logger, concurrency=1)

    async def ok():
        return 42

    async def boom():
        raise RuntimeError("extraction exploded")

    good = runner.submit("good", ok())
    runner.submit("bad", boom())
    await runner.do_drain()

    assert good.result() == 42
    assert [(f.name, f.error) for f in runner.failures] == [("bad", "extraction exploded")]
    assert runner.pending_count() == 0


@pytest.mark.asyncio
async def test_runner_limits_concurrency(logger):
    runner = BackgroundTaskRunner(logger=logger, concurrency=2)
    running = 0
    peak = 0

    async def job():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(6):
        runner.submit(f"job-{i}", job())
    await runner.do_drain()

    assert peak == 2


def test_config_store_roundtrip_and_defaults(helper_config):
    store = EmbeddingConfigStore(helper_config=helper_config)

    assert store.load() == EmbeddingConfig()
    store.save(EmbeddingConfig(provider="openai", api_key="sk-x", model="text-embedding-3-small"))
    loaded = store.load()

    assert loaded.model_tag == "openai:text-embedding-3-small"
    assert loaded.api_key == "sk-x"


def test_config_store_rejects_invalid_and_survives_garbage(helper_config):
    store = EmbeddingConfigStore(helper_config=helper_config)

    with pytest.raises(ConfigurationError):
        store.save(EmbeddingConfig(max_chunk_size=0))
    with open(store.get_path(), "w", encoding="utf-8") as f:
        f.write("{not json")

    assert store.load() == EmbeddingConfig()


def test_helper_config_overrides_and_types(logger, monkeypatch):
    monkeypatch.setenv("INDEX_DEBOUNCE_SECONDS", "5")
    monkeypatch.setenv("DEBUG_RAG_CHUNKS", "true")
    config = HelperConfig(logger=logger, overrides={"index_debounce_seconds": "0.5"})

    assert config.get_number_val("INDEX_DEBOUNCE_SECONDS") == 0.5
    assert config.get_bool_val("DEBUG_RAG_CHUNKS") is True
    assert config.get_string_val("MISSING_KEY", default="fallback") == "fallback"
    with pytest.raises(ValueError):
        config.get_number_val("MISSING_KEY")
