import json
import math
from functools import lru_cache
import aiosqlite


@lru_cache(maxsize=32)
def _decode_vector(raw: str) -> tuple[float, ...]:
    return tuple(float(x) for x in json.loads(raw))


def cosine_distance(a: list[float] | tuple[float, ...], b: list[float] | tuple[float, ...]) -> float:
    """1 - cosine similarity. 0 means same direction, 2 means opposite."""
    if len(a) != len(b):
        raise ValueError(f"Vector size mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


def _sql_cosine_distance(embedding: str | None, query: str) -> float | None:
    # Registered as a SQLite function; embeddings are stored as JSON arrays.
    if embedding is None:
        return None
    stored = _decode_vector(embedding)
    wanted = _decode_vector(query)
    if len(stored) != len(wanted):
        return None
    return cosine_distance(stored, wanted)


# --- Seeding ---

async def create_store(db_path: str, name: str) -> int:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("INSERT INTO stores (name) VALUES (?)", (name,))
        await db.commit()
        return cursor.lastrowid


async def create_product(
    db_path: str,
    store_id: int,
    name: str,
    price: float,
    embedding: list[float] | None = None,
) -> int:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "INSERT INTO products (store_id, name, price, embedding) VALUES (?, ?, ?, ?)",
            (store_id, name, price, json.dumps(embedding) if embedding is not None else None),
        )
        await db.commit()
        return cursor.lastrowid


# --- Similarity search ---

async def find_candidates_by_similarity(
    db_path: str,
    vector: list[float],
    threshold: float = 0.65,
) -> list[dict]:
    """Products closer than `threshold` (cosine distance) to `vector`, grouped by store.

    Returns `[{"store_id", "products": [{"id", "name", "price", "similarity"}]}]`.
    Stores without a single match are left out; products within a store are
    ordered from closest to farthest.
    """
    query_vector = json.dumps(vector)
    async with aiosqlite.connect(db_path) as db:
        await db.create_function("cosine_distance", 2, _sql_cosine_distance, deterministic=True)
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT store_id, id, name, price, distance FROM (
                SELECT p.store_id, p.id, p.name, p.price,
                       cosine_distance(p.embedding, ?) AS distance
                FROM products p
                WHERE p.embedding IS NOT NULL
            )
            WHERE distance IS NOT NULL AND distance < ?
            ORDER BY store_id ASC, distance ASC, id ASC
            """,
            (query_vector, threshold),
        )
        rows = await cursor.fetchall()

    grouped: dict[int, list[dict]] = {}
    for row in rows:
        grouped.setdefault(row["store_id"], []).append({
            "id": row["id"],
            "name": row["name"],
            "price": row["price"],
            "similarity": 1.0 - row["distance"],
        })
    return [{"store_id": store_id, "products": products} for store_id, products in grouped.items()]


async def lookup_store_for_product(db_path: str, product_id: int) -> int | None:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("SELECT store_id FROM products WHERE id = ?", (product_id,))
        row = await cursor.fetchone()
        return row[0] if row else None


# --- Embedding population ---

async def list_products_without_embedding(db_path: str, limit: int = 500) -> list[dict]:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT id, name FROM products WHERE embedding IS NULL ORDER BY id LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def save_product_embeddings(db_path: str, records: list[dict]) -> int:
    """Store `[{"product_id", "embedding"}]` records. Returns how many products were updated."""
    updated = 0
    async with aiosqlite.connect(db_path) as db:
        for record in records:
            cursor = await db.execute(
                "UPDATE products SET embedding = ? WHERE id = ?",
                (json.dumps(record["embedding"]), int(record["product_id"])),
            )
            updated += cursor.rowcount
        await db.commit()
    return updated
