"""聊天路由"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from ..errors import NotFoundError, OwnershipError, ValidationError
from ..schemas.chat import (
    ChatSendRequest,
    ChatSendResponse,
    ConversationDeleteResponse,
    ConversationDetailResponse,
    ConversationListResponse,
    MessageEditRequest,
    MessageEditResponse,
)
from ..services.chat_orchestrator import ChatOrchestrator
from ..services.conversation_registry import ConversationRegistry
from ..utils.deps import get_chat_orchestrator, get_conversation_registry, get_current_user_id

router = APIRouter(prefix="/chat", tags=["聊天"])

logger = logging.getLogger(__name__)


@router.post("/send", response_model=ChatSendResponse)
async def send_message(
    payload: ChatSendRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    orchestrator: Annotated[ChatOrchestrator, Depends(get_chat_orchestrator)],
):
    try:
        turn = await orchestrator.send(
            user_id,
            payload.message,
            conversation_id=payload.conversation_id,
            assessment_id=payload.assessment_id,
        )
    except (NotFoundError, OwnershipError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation or assessment not found")
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "errors": list(e.errors)},
        )

    return ChatSendResponse(
        message="Message sent successfully",
        conversation_id=turn.conversation_id,
        user_message=turn.user_message,
        assistant_message=turn.assistant_message,
    )


@router.get("/history", response_model=ConversationListResponse)
async def get_history(
    user_id: Annotated[str, Depends(get_current_user_id)],
    registry: Annotated[ConversationRegistry, Depends(get_conversation_registry)],
):
    conversations = await registry.list_for_user(user_id)
    return ConversationListResponse(conversations=conversations)


@router.get("/{conversation_id}", response_model=ConversationDetailResponse)
async def get_conversation(
    conversation_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    registry: Annotated[ConversationRegistry, Depends(get_conversation_registry)],
):
    conversation = await registry.get_with_messages(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


@router.put("/{conversation_id}/messages/{message_id}", response_model=MessageEditResponse)
async def edit_message(
    conversation_id: str,
    message_id: str,
    payload: MessageEditRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    orchestrator: Annotated[ChatOrchestrator, Depends(get_chat_orchestrator)],
):
    try:
        turn = await orchestrator.edit_and_regenerate(user_id, conversation_id, message_id, payload.content)
    except (NotFoundError, OwnershipError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "errors": list(e.errors)},
        )

    return MessageEditResponse(updated_message=turn.user_message, assistant_message=turn.assistant_message)


@router.delete("/{conversation_id}", response_model=ConversationDeleteResponse)
async def delete_conversation(
    conversation_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    registry: Annotated[ConversationRegistry, Depends(get_conversation_registry)],
):
    if not await registry.delete(conversation_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return ConversationDeleteResponse(message="Conversation deleted successfully", id=conversation_id)
