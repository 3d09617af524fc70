"""Rebuild runner entry point.

Re-indexes every document and external block from the document source into
the vector index, using the saved embedding settings.

Usage:
    python -m services.rag_index.rebuild_runner
"""

import asyncio
import sys

from services.rag.RAGService import RAGService
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.status import ReindexProgress


async def main() -> int:
    """Run a full rebuild. Returns the process exit code."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    rag_service = RAGService(helper_config=config)

    try:
        await rag_service.boot()
        status = await rag_service.do_get_status()
        if not status.enabled:
            logger.error("Embedding provider is not configured (%s). Aborting.", status.error)
            return 1

        connection = await rag_service.do_test_connection()
        if not connection.success:
            logger.error("Embedding provider is not reachable: %s. Aborting.", connection.error)
            return 1

        def report(progress: ReindexProgress) -> None:
            logger.info("[%s] %d/%d", progress.phase, progress.current, progress.total)

        result = await rag_service.index_service.do_rebuild(on_progress=report)
        if result.errors:
            for error in result.errors:
                logger.warning("Failed: %s", error)
        return 0 if result.failed == 0 else 2
    finally:
        await rag_service.close()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
