import asyncio

import pytest
import pytest_asyncio

from app.models import catalog
from app.models.database import init_db
from app.services.llm.base import LLMProvider

DIMENSIONS = 1536


def vector(*values: float) -> list[float]:
    """A full-size embedding whose leading components are `values`."""
    return [float(v) for v in values] + [0.0] * (DIMENSIONS - len(values))


# Query direction used throughout the tests.
QUERY = vector(1)

# Integer vectors with exact norms, so their cosine distance to QUERY is exact.
DISTANCE_0_10 = vector(9, 3, 3, 1)       # |v| = 10, cos = 0.9
DISTANCE_0_50 = vector(1, 1, 1, 1)       # |v| = 2,  cos = 0.5
DISTANCE_0_64 = vector(9, 20, 12)        # |v| = 25, cos = 0.36
DISTANCE_0_65 = vector(7, 18, 5, 1, 1)   # |v| = 20, cos = 0.35
DISTANCE_0_90 = vector(1, 9, 3, 3)       # |v| = 10, cos = 0.1

SEND_MESSAGE = {"message": "ok", "action": {"type": "send_message"}}


def suggest_carts_reply(text: str = "bolo de chocolate") -> dict:
    return {
        "message": "Do you want me to assemble the carts?",
        "action": {"type": "suggest_carts", "payload": {"input": text}},
    }


def carts_for_all_candidates(candidates: list[dict]) -> dict:
    return {
        "carts": [
            {
                "store_id": group["store_id"],
                "products": [
                    {"id": p["id"], "name": p["name"], "quantity": 1}
                    for p in group["products"]
                ],
                "score": 80,
            }
            for group in candidates
        ],
        "response": "Carts suggested from the available products.",
    }


class FakeProvider(LLMProvider):
    """Scripted backend. Validation and timeouts still run in LLMProvider."""

    name = "fake"

    def __init__(self, replies=None, carts=carts_for_all_candidates, embedding=None,
                 delay: float = 0.0, assemble_delay: float = 0.0, timeout: float = 1.0):
        super().__init__(timeout=timeout, embedding_dimensions=DIMENSIONS)
        self.replies = list(replies or [])
        self.carts = carts
        self.embedding = embedding if embedding is not None else QUERY
        self.delay = delay
        self.assemble_delay = assemble_delay
        self.notification = None
        self.calls: list[tuple] = []
        self.batches: list[list[dict]] = []
        self._turns = 0

    async def _complete_turn(self, message, prior_turn_ref, prior_messages):
        self.calls.append(("complete_turn", message, prior_turn_ref, prior_messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else SEND_MESSAGE
        if isinstance(reply, Exception):
            raise reply
        self._turns += 1
        return reply, f"turn-{self._turns}"

    async def _embed(self, text):
        self.calls.append(("embed", text))
        if isinstance(self.embedding, Exception):
            raise self.embedding
        return self.embedding

    async def _assemble_carts(self, candidates, original_input):
        self.calls.append(("assemble_carts", candidates, original_input))
        if self.assemble_delay:
            await asyncio.sleep(self.assemble_delay)
        if isinstance(self.carts, Exception):
            raise self.carts
        if callable(self.carts):
            return self.carts(candidates)
        return self.carts

    async def _submit_batch_embedding(self, products):
        self.batches.append(products)

    async def _ingest_batch_result(self, raw_payload, headers):
        return self.notification

    def operations(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest_asyncio.fixture
async def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    await init_db(path)
    return path


@pytest_asyncio.fixture
async def seeded_catalog(db_path):
    """Two stores; only the first has products close enough to QUERY."""
    market = await catalog.create_store(db_path, "Mercado Central")
    corner = await catalog.create_store(db_path, "Empório da Esquina")
    products = {
        "flour": await catalog.create_product(db_path, market, "Farinha de trigo 1kg", 6.5, DISTANCE_0_10),
        "chocolate": await catalog.create_product(db_path, market, "Chocolate meio amargo 200g", 12.9, DISTANCE_0_50),
        "sugar": await catalog.create_product(db_path, market, "Açúcar refinado 1kg", 4.8, DISTANCE_0_64),
        "yeast": await catalog.create_product(db_path, market, "Fermento em pó 100g", 3.2, DISTANCE_0_65),
        "detergent": await catalog.create_product(db_path, market, "Detergente 500ml", 2.5, DISTANCE_0_90),
        "soap": await catalog.create_product(db_path, corner, "Sabão em pó 1kg", 15.0, DISTANCE_0_90),
        "eggs": await catalog.create_product(db_path, corner, "Ovos caipira 12un", 14.0),
    }
    return {"stores": {"market": market, "corner": corner}, "products": products}


@pytest.fixture
def provider():
    return FakeProvider()
