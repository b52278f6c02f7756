from typing import Any, Literal

from pydantic import BaseModel

from app.services.llm.schemas import Cart


# --- Session schemas ---

class CreateSessionResponse(BaseModel):
    session_id: int


class ActionInfo(BaseModel):
    id: int
    action_type: str
    payload: dict[str, Any]
    created_at: str
    confirmed_at: str | None = None
    executed_at: str | None = None


class MessageInfo(BaseModel):
    id: int
    content: str
    sender: Literal["user", "assistant"]
    provider_turn_ref: str | None = None
    message_type: Literal["text", "suggest_carts_result"]
    created_at: str
    action: ActionInfo | None = None


class SessionDetail(BaseModel):
    session_id: int
    user_id: int
    created_at: str
    messages: list[MessageInfo]


# --- Chat schemas ---

class MessageRequest(BaseModel):
    content: Any = None


class MessageResponse(BaseModel):
    id: int
    session_id: int
    content: str
    sender: Literal["user", "assistant"]
    message_type: Literal["text", "suggest_carts_result"]
    created_at: str


class ActionResult(BaseModel):
    action_id: int
    action_type: str
    carts: list[Cart]
    message: str


# --- Catalog schemas ---

class EmbeddingSubmission(BaseModel):
    submitted: int


class WebhookAck(BaseModel):
    saved: int
