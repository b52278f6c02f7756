import logging

from app.models import catalog

logger = logging.getLogger(__name__)


async def retrieve_candidates(
    db_path: str,
    embedding: list[float],
    threshold: float = 0.65,
) -> list[dict]:
    """Catalog products plausibly relevant to `embedding`, grouped by store.

    Only products strictly closer than `threshold` are kept; ranking inside
    each store is left to cart assembly.
    """
    candidates = await catalog.find_candidates_by_similarity(db_path, embedding, threshold)
    total = sum(len(group["products"]) for group in candidates)
    logger.info(f"Retrieved {total} candidates across {len(candidates)} stores")
    return candidates
