from fastapi import Depends, Header, Request
from app.config import settings
from app.services.chat import ChatService
from app.services.llm.base import LLMProvider


def get_db_path() -> str:
    """Provide the database path to endpoint functions."""
    return settings.SQLITE_DB_PATH


def get_provider(request: Request) -> LLMProvider:
    """The language-model backend built at startup."""
    return request.app.state.provider


def get_user_id(x_user_id: int | None = Header(default=None)) -> int:
    """Acting user, taken from the X-User-Id header."""
    return x_user_id if x_user_id is not None else settings.DEFAULT_USER_ID


def get_chat_service(
    db_path: str = Depends(get_db_path),
    provider: LLMProvider = Depends(get_provider),
) -> ChatService:
    return ChatService(db_path, provider, settings.SIMILARITY_THRESHOLD)
