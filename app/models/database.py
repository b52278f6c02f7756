import json
from pathlib import Path
import aiosqlite

# Millisecond timestamps; datetime('now') alone cannot order two messages
# written within the same second.
NOW = "strftime('%Y-%m-%d %H:%M:%f', 'now')"


async def init_db(db_path: str):
    """Create tables if they don't exist. Called once on app startup."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.executescript(f"""
            CREATE TABLE IF NOT EXISTS chat_sessions (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id     INTEGER NOT NULL,
                created_at  TEXT NOT NULL DEFAULT ({NOW})
            );

            CREATE TABLE IF NOT EXISTS chat_messages (
                id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_session_id     INTEGER NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
                content             TEXT NOT NULL,
                sender              TEXT NOT NULL CHECK (sender IN ('user', 'assistant')),
                provider_turn_ref   TEXT,
                message_type        TEXT NOT NULL DEFAULT 'text'
                                    CHECK (message_type IN ('text', 'suggest_carts_result')),
                created_at          TEXT NOT NULL DEFAULT ({NOW})
            );

            CREATE INDEX IF NOT EXISTS idx_chat_messages_session
                ON chat_messages(chat_session_id, created_at);

            CREATE TABLE IF NOT EXISTS chat_message_actions (
                id               INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_message_id  INTEGER NOT NULL REFERENCES chat_messages(id),
                action_type      TEXT NOT NULL,
                payload          TEXT NOT NULL,
                created_at       TEXT NOT NULL DEFAULT ({NOW}),
                confirmed_at     TEXT,
                executed_at      TEXT,
                execution_started_at TEXT,
                UNIQUE (chat_message_id, action_type)
            );

            CREATE TABLE IF NOT EXISTS stores (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                name        TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS products (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                store_id    INTEGER NOT NULL REFERENCES stores(id),
                name        TEXT NOT NULL,
                price       REAL NOT NULL,
                embedding   TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_products_store
                ON products(store_id);
        """)
        await db.commit()


# --- Session CRUD ---

async def create_session(db_path: str, user_id: int) -> int:
    """Create a new chat session for a user. Returns the session id."""
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "INSERT INTO chat_sessions (user_id) VALUES (?)",
            (user_id,),
        )
        await db.commit()
        return cursor.lastrowid


async def get_session(db_path: str, session_id: int, user_id: int) -> dict | None:
    """Fetch a session owned by `user_id`. Returns None if not found."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_sessions WHERE id = ? AND user_id = ?",
            (session_id, user_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)


async def get_session_detail(db_path: str, session_id: int, user_id: int) -> dict | None:
    """Load a session with its messages, oldest first, each with its action (or None)."""
    session = await get_session(db_path, session_id, user_id)
    if session is None:
        return None

    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT m.*,
                   a.id           AS action_id,
                   a.action_type  AS action_type,
                   a.payload      AS action_payload,
                   a.created_at   AS action_created_at,
                   a.confirmed_at AS action_confirmed_at,
                   a.executed_at  AS action_executed_at
            FROM chat_messages m
            LEFT JOIN chat_message_actions a ON a.chat_message_id = m.id
            WHERE m.chat_session_id = ?
            ORDER BY m.created_at ASC, m.id ASC
            """,
            (session_id,),
        )
        rows = await cursor.fetchall()

    messages = []
    for row in rows:
        row = dict(row)
        action = None
        if row["action_id"] is not None:
            action = {
                "id": row["action_id"],
                "action_type": row["action_type"],
                "payload": json.loads(row["action_payload"]),
                "created_at": row["action_created_at"],
                "confirmed_at": row["action_confirmed_at"],
                "executed_at": row["action_executed_at"],
            }
        messages.append({
            "id": row["id"],
            "content": row["content"],
            "sender": row["sender"],
            "provider_turn_ref": row["provider_turn_ref"],
            "message_type": row["message_type"],
            "created_at": row["created_at"],
            "action": action,
        })

    session["messages"] = messages
    return session


# --- Message CRUD ---

async def save_message(
    db_path: str,
    session_id: int,
    content: str,
    sender: str,
    provider_turn_ref: str | None = None,
    message_type: str = "text",
) -> dict:
    """Append a message to the session. Returns the stored row."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            INSERT INTO chat_messages
                (chat_session_id, content, sender, provider_turn_ref, message_type)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *
            """,
            (session_id, content, sender, provider_turn_ref, message_type),
        )
        row = await cursor.fetchone()
        await db.commit()
        return dict(row)


async def get_messages(
    db_path: str,
    session_id: int,
    message_type: str | None = None,
) -> list[dict]:
    """Load the messages of a session, oldest first, optionally of one type."""
    query = "SELECT * FROM chat_messages WHERE chat_session_id = ?"
    params: tuple = (session_id,)
    if message_type is not None:
        query += " AND message_type = ?"
        params += (message_type,)
    query += " ORDER BY created_at ASC, id ASC"

    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def get_last_assistant_turn_ref(db_path: str, session_id: int) -> str | None:
    """Continuity handle of the latest assistant reply that carries one."""
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            """
            SELECT provider_turn_ref FROM chat_messages
            WHERE chat_session_id = ? AND sender = 'assistant'
              AND provider_turn_ref IS NOT NULL
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (session_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None


# --- Action CRUD ---

def _action_from_row(row: aiosqlite.Row) -> dict:
    action = dict(row)
    action["payload"] = json.loads(action["payload"])
    return action


_ACTION_SELECT = """
    SELECT a.*, m.chat_session_id AS chat_session_id
    FROM chat_message_actions a
    JOIN chat_messages m ON m.id = a.chat_message_id
"""


async def create_pending_action(
    db_path: str,
    message_id: int,
    action_type: str,
    payload: dict,
) -> dict:
    """Attach a pending action to a message.

    Idempotent on (message_id, action_type): a duplicate proposal is ignored by
    the unique constraint and the existing record is returned.
    """
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await db.execute(
            """
            INSERT INTO chat_message_actions (chat_message_id, action_type, payload)
            VALUES (?, ?, ?)
            ON CONFLICT (chat_message_id, action_type) DO NOTHING
            """,
            (message_id, action_type, json.dumps(payload)),
        )
        await db.commit()
        cursor = await db.execute(
            _ACTION_SELECT + " WHERE a.chat_message_id = ? AND a.action_type = ?",
            (message_id, action_type),
        )
        row = await cursor.fetchone()
        return _action_from_row(row)


async def get_action(db_path: str, action_id: int) -> dict | None:
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(_ACTION_SELECT + " WHERE a.id = ?", (action_id,))
        row = await cursor.fetchone()
        return _action_from_row(row) if row else None


async def find_confirmable_action(db_path: str, action_id: int) -> dict | None:
    """Fetch an action that has not been confirmed yet. Returns None otherwise."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            _ACTION_SELECT + " WHERE a.id = ? AND a.confirmed_at IS NULL",
            (action_id,),
        )
        row = await cursor.fetchone()
        return _action_from_row(row) if row else None


async def mark_action_confirmed(db_path: str, action_id: int) -> bool:
    """Atomically confirm an action. True only for the caller that confirmed it.

    The winner also holds the execution claim, so a retry cannot start while
    the confirmation is still executing.
    """
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            f"UPDATE chat_message_actions SET confirmed_at = {NOW}, execution_started_at = {NOW} "
            "WHERE id = ? AND confirmed_at IS NULL",
            (action_id,),
        )
        await db.commit()
        return cursor.rowcount == 1


async def claim_action_execution(db_path: str, action_id: int, stale_after: float = 300.0) -> bool:
    """Take the execution claim of a confirmed, unexecuted action.

    A claim older than `stale_after` seconds is treated as abandoned.
    """
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            f"""
            UPDATE chat_message_actions SET execution_started_at = {NOW}
            WHERE id = ? AND confirmed_at IS NOT NULL AND executed_at IS NULL
              AND (execution_started_at IS NULL
                   OR execution_started_at < strftime('%Y-%m-%d %H:%M:%f', 'now', ?))
            """,
            (action_id, f"-{stale_after} seconds"),
        )
        await db.commit()
        return cursor.rowcount == 1


async def release_action_execution(db_path: str, action_id: int) -> None:
    """Drop the execution claim after a failed run so it can be retried."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            "UPDATE chat_message_actions SET execution_started_at = NULL "
            "WHERE id = ? AND executed_at IS NULL",
            (action_id,),
        )
        await db.commit()


async def mark_action_executed(
    db_path: str,
    action_id: int,
    session_id: int | None = None,
    result_content: str | None = None,
) -> bool:
    """Mark a confirmed action executed, at most once.

    When `result_content` is given, the `suggest_carts_result` message is
    appended in the same transaction, and only if this call did the marking.
    """
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            f"UPDATE chat_message_actions SET executed_at = {NOW} "
            "WHERE id = ? AND confirmed_at IS NOT NULL AND executed_at IS NULL",
            (action_id,),
        )
        executed = cursor.rowcount == 1
        if executed and result_content is not None:
            await db.execute(
                """
                INSERT INTO chat_messages (chat_session_id, content, sender, message_type)
                VALUES (?, ?, 'assistant', 'suggest_carts_result')
                """,
                (session_id, result_content),
            )
        await db.commit()
        return executed
