import asyncio
import json
import logging
from typing import Any

from app.errors import Conflict, InvalidInput, NotFound, UnsupportedAction
from app.models import database
from app.services.llm.base import LLMProvider
from app.services.retrieval import retrieve_candidates

logger = logging.getLogger(__name__)

SUGGEST_CARTS = "suggest_carts"
NO_CANDIDATES_MESSAGE = "No products in the catalog match this request."


async def _persist(write):
    # A disconnecting caller must not leave a turn half written.
    return await asyncio.shield(write)


class ChatService:
    """Drives conversation turns and the confirm/execute lifecycle of proposed actions."""

    def __init__(self, db_path: str, provider: LLMProvider, similarity_threshold: float = 0.65):
        self.db_path = db_path
        self.provider = provider
        self.similarity_threshold = similarity_threshold
        self._executors = {
            SUGGEST_CARTS: self._execute_suggest_carts,
        }

    # -- Sessions --

    async def create_session(self, user_id: int) -> int:
        session_id = await database.create_session(self.db_path, user_id)
        logger.info(f"Created chat session {session_id} for user {user_id}")
        return session_id

    async def get_session(self, user_id: int, session_id: int) -> dict:
        session = await database.get_session_detail(self.db_path, session_id, user_id)
        if session is None:
            raise NotFound("Chat session not found")
        return session

    async def _require_session(self, user_id: int, session_id: int) -> dict:
        session = await database.get_session(self.db_path, session_id, user_id)
        if session is None:
            raise NotFound("Chat session not found")
        return session

    # -- Turns --

    async def add_user_message(self, user_id: int, session_id: int, content: Any) -> dict:
        """Run one turn and return the stored user message.

        The assistant reply is persisted but not returned; callers read it
        back with the session. If the provider fails, the user message stays
        stored and the same turn can simply be submitted again.
        """
        if not isinstance(content, str) or not content.strip():
            raise InvalidInput("Content must be a non-empty string")
        content = content.strip()

        await self._require_session(user_id, session_id)

        prior_turn_ref = await database.get_last_assistant_turn_ref(self.db_path, session_id)
        history = await database.get_messages(self.db_path, session_id, message_type="text")
        # User messages left by failed turns never got a reply; this turn supersedes them.
        while history and history[-1]["sender"] == "user":
            history.pop()
        prior_messages = [{"content": m["content"], "role": m["sender"]} for m in history]

        user_message = await _persist(
            database.save_message(self.db_path, session_id, content, "user")
        )

        result = await self.provider.complete_turn(content, prior_turn_ref, prior_messages)

        assistant_message = await _persist(
            database.save_message(
                self.db_path, session_id, result.reply_text, "assistant", result.turn_ref,
            )
        )

        proposed = result.proposed_action
        if proposed is not None:
            if proposed.type in self._executors:
                action = await _persist(
                    database.create_pending_action(
                        self.db_path, assistant_message["id"], proposed.type, proposed.payload,
                    )
                )
                logger.info(
                    f"Message {assistant_message['id']} proposed {proposed.type} (action {action['id']})"
                )
            else:
                logger.warning(f"Ignoring unrecognized proposed action {proposed.type!r}")

        return user_message

    # -- Actions --

    async def confirm_action(self, user_id: int, session_id: int, action_id: int) -> dict:
        """Confirm a pending action exactly once and execute it."""
        await self._require_session(user_id, session_id)

        action = await database.find_confirmable_action(self.db_path, action_id)
        if action is None or action["chat_session_id"] != session_id:
            existing = await database.get_action(self.db_path, action_id)
            if (
                existing is not None
                and existing["chat_session_id"] == session_id
                and existing["confirmed_at"] is not None
            ):
                raise Conflict("This action has already been confirmed")
            raise NotFound("Action not found or already confirmed")

        # Losing this update means another request confirmed it in between.
        if not await _persist(database.mark_action_confirmed(self.db_path, action_id)):
            raise Conflict("This action has already been confirmed")

        logger.info(f"Action {action_id} ({action['action_type']}) confirmed")
        return await self._execute(session_id, action)

    async def execute_action(self, user_id: int, session_id: int, action_id: int) -> dict:
        """Retry an action that was confirmed but whose execution did not finish."""
        await self._require_session(user_id, session_id)

        action = await database.get_action(self.db_path, action_id)
        if action is None or action["chat_session_id"] != session_id:
            raise NotFound("Action not found")
        if action["confirmed_at"] is None:
            raise Conflict("Action must be confirmed before it can be executed")
        if action["executed_at"] is not None:
            raise Conflict("Action has already been executed")
        if not await _persist(database.claim_action_execution(self.db_path, action_id)):
            raise Conflict("Action is already being executed")

        return await self._execute(session_id, action)

    async def _execute(self, session_id: int, action: dict) -> dict:
        """Run an action whose execution claim the caller holds."""
        executor = self._executors.get(action["action_type"])
        if executor is None:
            raise UnsupportedAction(f"Action type {action['action_type']} is not supported")
        try:
            return await executor(session_id, action)
        except BaseException:
            await _persist(database.release_action_execution(self.db_path, action["id"]))
            raise

    async def _execute_suggest_carts(self, session_id: int, action: dict) -> dict:
        text = action["payload"]["input"]

        embedding = await self.provider.embed(text)
        candidates = await retrieve_candidates(self.db_path, embedding, self.similarity_threshold)

        if candidates:
            suggestion = await self.provider.assemble_carts(candidates, text)
            carts = [cart.model_dump() for cart in suggestion.carts]
            message = suggestion.response
        else:
            carts = []
            message = NO_CANDIDATES_MESSAGE

        executed = await _persist(
            database.mark_action_executed(
                self.db_path,
                action["id"],
                session_id,
                json.dumps({"carts": carts, "message": message}, ensure_ascii=False),
            )
        )
        if not executed:
            raise Conflict("Action has already been executed")
        logger.info(f"Action {action['id']} executed with {len(carts)} carts")

        return {
            "action_id": action["id"],
            "action_type": action["action_type"],
            "carts": carts,
            "message": message,
        }
