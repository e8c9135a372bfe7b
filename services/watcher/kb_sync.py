"""Knowledge-base resync entry point.

Indexes every supported file under KNOWLEDGE_BASE_PATH for
KNOWLEDGE_BASE_OWNER_ID once and exits. Files already indexed are skipped by
content hash, so it is safe to run repeatedly. With --reconcile, documents
whose vector count no longer matches their chunk count are re-indexed too.

Usage:
    python -m services.watcher.kb_sync [--reconcile]
"""

import asyncio
import sys

from services.ingestion.IngestionService import IngestionService
from services.watcher.WatcherService import WatcherService
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.storage.StorageClientManager import StorageClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.store.MetadataStore import MetadataStore


async def main(reconcile: bool = False) -> int:
    """Run one full sync. Returns the process exit code."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    storage = StorageClientManager(helper_config=config).get_client()
    metadata_store = MetadataStore(helper_config=config)

    try:
        # every backend is required, a partial sync would only produce rollbacks
        try:
            for client in (embed_client, rag_client):
                await client.boot()
                response = await client.do_healthcheck()
                if not response.is_success:
                    raise RuntimeError(f"{client.get_engine_name()} healthcheck returned status {response.status_code}")
            await storage.boot()
            await metadata_store.boot()
        except Exception as e:
            logger.error("Error booting backends: %s. Aborting.", e)
            return 1

        ingestion_service = IngestionService(
            helper_config=config,
            embed_client=embed_client,
            rag_client=rag_client,
            storage=storage,
            metadata_store=metadata_store,
        )
        watcher = WatcherService(helper_config=config, ingestion_service=ingestion_service)
        report = await watcher.do_sync()
        if reconcile:
            await ingestion_service.do_reconcile(watcher.owner_id)
        return 1 if report.failed else 0
    finally:
        await embed_client.close()
        await rag_client.close()
        await storage.close()
        await metadata_store.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(reconcile="--reconcile" in sys.argv[1:])))
