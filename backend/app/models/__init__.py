"""数据模型"""
from .assessment import Assessment
from .conversation import Conversation, ChatMessage

__all__ = [
    "Assessment",
    "Conversation",
    "ChatMessage",
]
