"""Pydantic模式"""
from .assessment import (
    AssessmentDeleteResponse,
    AssessmentResponse,
    AssessmentSendRequest,
)
from .chat import (
    ChatSendRequest,
    ChatSendResponse,
    ConversationDeleteResponse,
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationSummary,
    MessageEditRequest,
    MessageEditResponse,
    MessageResponse,
)

__all__ = [
    "AssessmentDeleteResponse",
    "AssessmentResponse",
    "AssessmentSendRequest",
    "ChatSendRequest",
    "ChatSendResponse",
    "ConversationDeleteResponse",
    "ConversationDetailResponse",
    "ConversationListResponse",
    "ConversationSummary",
    "MessageEditRequest",
    "MessageEditResponse",
    "MessageResponse",
]
