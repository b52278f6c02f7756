"""Catalog embedding population, fed by the provider's batch embedding."""
import logging

from app.models import catalog
from app.services.llm.base import LLMProvider

logger = logging.getLogger(__name__)


async def submit_missing_embeddings(db_path: str, provider: LLMProvider, limit: int = 500) -> int:
    """Send products that have no embedding yet to batch embedding. Returns how many were sent."""
    products = await catalog.list_products_without_embedding(db_path, limit=limit)
    if not products:
        return 0
    await provider.submit_batch_embedding(products)
    logger.info(f"Submitted {len(products)} products for embedding via {provider.name}")
    return len(products)


async def ingest_notification(
    db_path: str,
    provider: LLMProvider,
    raw_payload: str,
    headers: dict[str, str],
) -> int:
    """Store the embeddings carried by a provider notification. Returns how many were saved."""
    records = await provider.ingest_batch_result(raw_payload, headers)
    if not records:
        return 0

    usable = [r for r in records if len(r["embedding"]) == provider.embedding_dimensions]
    if len(usable) != len(records):
        logger.warning(f"Dropped {len(records) - len(usable)} embeddings with the wrong size")
    return await catalog.save_product_embeddings(db_path, usable)
