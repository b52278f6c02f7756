"""Tests for the catalog similarity search and embedding population."""

import pytest

from app.models import catalog
from app.services.retrieval import retrieve_candidates

from conftest import DISTANCE_0_65, QUERY, vector


def test_cosine_distance_of_exact_vectors():
    assert catalog.cosine_distance(QUERY, DISTANCE_0_65) == 0.65
    assert catalog.cosine_distance(QUERY, QUERY) == 0.0
    assert catalog.cosine_distance(vector(1), vector(-1)) == 2.0


def test_cosine_distance_rejects_mismatched_sizes():
    with pytest.raises(ValueError):
        catalog.cosine_distance([1.0, 0.0], [1.0, 0.0, 0.0])


@pytest.mark.asyncio
async def test_threshold_is_strictly_less_than(db_path, seeded_catalog):
    """Distances 0.1, 0.5, 0.64 pass; 0.65 and 0.9 do not."""
    products = seeded_catalog["products"]

    candidates = await catalog.find_candidates_by_similarity(db_path, QUERY, 0.65)

    assert len(candidates) == 1
    group = candidates[0]
    assert group["store_id"] == seeded_catalog["stores"]["market"]
    assert [p["id"] for p in group["products"]] == [
        products["flour"], products["chocolate"], products["sugar"],
    ]
    similarities = [p["similarity"] for p in group["products"]]
    assert similarities == pytest.approx([0.9, 0.5, 0.36])


@pytest.mark.asyncio
async def test_stores_without_matches_are_omitted(db_path, seeded_catalog):
    candidates = await retrieve_candidates(db_path, QUERY, threshold=0.95)

    by_store = {group["store_id"]: group["products"] for group in candidates}
    assert set(by_store) == set(seeded_catalog["stores"].values())
    # The product without an embedding is never a candidate.
    assert seeded_catalog["products"]["eggs"] not in {
        p["id"] for products in by_store.values() for p in products
    }


@pytest.mark.asyncio
async def test_no_candidates_returns_empty_list(db_path, seeded_catalog):
    assert await catalog.find_candidates_by_similarity(db_path, vector(0, 0, 0, 0, 0, 1), 0.65) == []


@pytest.mark.asyncio
async def test_lookup_store_for_product(db_path, seeded_catalog):
    soap = seeded_catalog["products"]["soap"]
    assert await catalog.lookup_store_for_product(db_path, soap) == seeded_catalog["stores"]["corner"]
    assert await catalog.lookup_store_for_product(db_path, 9999) is None


@pytest.mark.asyncio
async def test_save_product_embeddings(db_path, seeded_catalog):
    eggs = seeded_catalog["products"]["eggs"]
    pending = await catalog.list_products_without_embedding(db_path)
    assert [p["id"] for p in pending] == [eggs]

    updated = await catalog.save_product_embeddings(
        db_path, [{"product_id": str(eggs), "embedding": QUERY}]
    )

    assert updated == 1
    assert await catalog.list_products_without_embedding(db_path) == []
    candidates = await catalog.find_candidates_by_similarity(db_path, QUERY, 0.01)
    assert [p["id"] for group in candidates for p in group["products"]] == [eggs]
