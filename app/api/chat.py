from fastapi import APIRouter, Depends
from app.dependencies import get_chat_service, get_user_id
from app.models.schemas import (
    ActionResult,
    CreateSessionResponse,
    MessageRequest,
    MessageResponse,
    SessionDetail,
)
from app.services.chat import ChatService

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("", response_model=CreateSessionResponse, status_code=201)
async def create_chat_session(
    user_id: int = Depends(get_user_id),
    chat: ChatService = Depends(get_chat_service),
):
    session_id = await chat.create_session(user_id)
    return CreateSessionResponse(session_id=session_id)


@router.get("/{session_id}", response_model=SessionDetail)
async def get_chat_session(
    session_id: int,
    user_id: int = Depends(get_user_id),
    chat: ChatService = Depends(get_chat_service),
):
    session = await chat.get_session(user_id, session_id)
    return SessionDetail(
        session_id=session["id"],
        user_id=session["user_id"],
        created_at=session["created_at"],
        messages=session["messages"],
    )


@router.post("/{session_id}/messages", response_model=MessageResponse, status_code=201)
async def add_user_message(
    session_id: int,
    body: MessageRequest,
    user_id: int = Depends(get_user_id),
    chat: ChatService = Depends(get_chat_service),
):
    message = await chat.add_user_message(user_id, session_id, body.content)
    return MessageResponse(
        id=message["id"],
        session_id=message["chat_session_id"],
        content=message["content"],
        sender=message["sender"],
        message_type=message["message_type"],
        created_at=message["created_at"],
    )


@router.post("/{session_id}/actions/{action_id}/confirm", response_model=ActionResult)
async def confirm_action(
    session_id: int,
    action_id: int,
    user_id: int = Depends(get_user_id),
    chat: ChatService = Depends(get_chat_service),
):
    return await chat.confirm_action(user_id, session_id, action_id)


@router.post("/{session_id}/actions/{action_id}/execute", response_model=ActionResult)
async def execute_action(
    session_id: int,
    action_id: int,
    user_id: int = Depends(get_user_id),
    chat: ChatService = Depends(get_chat_service),
):
    return await chat.execute_action(user_id, session_id, action_id)
