"""聊天相关的Pydantic模式"""
from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class ChatSendRequest(BaseModel):
    """发送消息；不带 conversationId 时创建新对话"""
    message: str = Field(..., description="用户消息")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    assessment_id: str | None = Field(default=None, alias="assessmentId")

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True)


class MessageEditRequest(BaseModel):
    content: str = Field(..., description="新的消息内容")


class MessageResponse(BaseModel):
    """消息"""
    id: str
    conversation_id: str
    role: str
    content: str
    user_id: str | None = None
    parent_message_id: str | None = None
    created_at: datetime
    edited_at: datetime | None = None


class ChatSendResponse(BaseModel):
    message: str
    conversation_id: str = Field(..., alias="conversationId")
    user_message: MessageResponse = Field(..., alias="userMessage")
    assistant_message: MessageResponse = Field(..., alias="assistantMessage")

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True)


class MessageEditResponse(BaseModel):
    updated_message: MessageResponse = Field(..., alias="updatedMessage")
    assistant_message: MessageResponse = Field(..., alias="assistantMessage")

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True)


class ConversationDetailResponse(BaseModel):
    """对话详情"""
    id: str
    user_id: str
    assessment_id: str | None = None
    assessment_pattern: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    messages: list[MessageResponse] = []


class ConversationSummary(BaseModel):
    """对话列表项"""
    id: str
    user_id: str
    assessment_id: str | None = None
    assessment_pattern: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    last_message_date: datetime | None = None
    preview: str
    message_count: int


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSummary]


class ConversationDeleteResponse(BaseModel):
    message: str
    id: str
