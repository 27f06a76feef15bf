"""对话注册表

负责对话的创建、评估关联、查询、列表预览与删除。
所有读写都按 user_id 过滤；不存在与无权访问对调用方表现一致（返回 None/False）。
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from ..errors import NotOwnedOrNotFoundError, PersistenceError
from ..utils.keyed_lock import KeyedLock, conversation_locks
from .assessment_repository import AssessmentRepository
from .record_store import RecordStore

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "chat_messages"

PREVIEW_LENGTH = 50
NO_MESSAGES_PREVIEW = "No messages yet"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: object) -> datetime:
    """统一为带时区的 UTC 时间；SQLite 读回的是 naive datetime"""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return as_utc(datetime.fromisoformat(value))
        except ValueError:
            return _EPOCH
    return _EPOCH


def thread_order_key(message: dict[str, object]) -> tuple[datetime, str]:
    """消息全序：(created_at, id) 升序"""
    return as_utc(message.get("created_at")), str(message.get("id") or "")


def order_messages(messages: list[dict[str, object]]) -> list[dict[str, object]]:
    return sorted(messages, key=thread_order_key)


def build_preview(content: object) -> str:
    """最新一条消息的预览文本，超过 50 个字符截断并追加省略号；内容为空时返回空串"""
    text = str(content or "")
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + "..."
    return text


class ConversationRegistry:
    """对话 CRUD 与评估关联"""

    def __init__(
        self,
        store: RecordStore,
        assessments: AssessmentRepository,
        locks: KeyedLock | None = None,
    ):
        self.store: RecordStore = store
        self.assessments: AssessmentRepository = assessments
        self.locks: KeyedLock = locks if locks is not None else conversation_locks

    async def _owned_assessment(self, assessment_id: str, user_id: str) -> dict[str, object] | None:
        assessment = await self.assessments.find_by_id(str(assessment_id))
        if assessment is None or str(assessment.get("user_id")) != str(user_id):
            return None
        return assessment

    async def create(self, user_id: str, assessment_id: str | None = None) -> str:
        """创建对话；关联的评估必须存在且属于该用户，pattern 在此刻快照"""
        pattern: object = None
        if assessment_id:
            assessment = await self._owned_assessment(assessment_id, user_id)
            if assessment is None:
                logger.warning(
                    "Conversation create rejected: assessment %s not found or not owned by %s",
                    assessment_id, user_id,
                )
                raise NotOwnedOrNotFoundError(f"Assessment {assessment_id} not found")
            pattern = assessment.get("pattern")

        now = utc_now()
        conversation_id = str(uuid.uuid4())
        _ = await self.store.create(CONVERSATIONS, {
            "id": conversation_id,
            "user_id": str(user_id),
            "assessment_id": str(assessment_id) if assessment_id else None,
            "assessment_pattern": pattern,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(
            "Conversation %s created for user %s assessment=%s pattern=%s",
            conversation_id, user_id, assessment_id, pattern,
        )
        return conversation_id

    async def get(self, conversation_id: str, user_id: str) -> dict[str, object] | None:
        """获取对话，不存在或不属于该用户时返回 None"""
        rows = await self.store.find_where(
            CONVERSATIONS, {"id": str(conversation_id), "user_id": str(user_id)}
        )
        return rows[0] if rows else None

    async def exists(self, conversation_id: str) -> bool:
        return await self.store.find_by_id(CONVERSATIONS, str(conversation_id)) is not None

    async def list_messages(self, conversation_id: str) -> list[dict[str, object]]:
        """对话内全部消息，按 (created_at, id) 排序"""
        rows = await self.store.find_by(MESSAGES, "conversation_id", str(conversation_id))
        return order_messages(rows)

    async def get_with_messages(self, conversation_id: str, user_id: str) -> dict[str, object] | None:
        conversation = await self.get(conversation_id, user_id)
        if conversation is None:
            return None
        result = dict(conversation)
        result["messages"] = await self.list_messages(conversation_id)
        return result

    async def list_for_user(self, user_id: str) -> list[dict[str, object]]:
        """对话列表（含最新消息预览与消息数），最近活动在前"""
        conversations = await self.store.find_by(CONVERSATIONS, "user_id", str(user_id))
        summaries: list[dict[str, object]] = []
        for conversation in conversations:
            messages = await self.list_messages(str(conversation["id"]))
            last = messages[-1] if messages else None
            summaries.append({
                "id": conversation["id"],
                "user_id": conversation["user_id"],
                "assessment_id": conversation.get("assessment_id"),
                "assessment_pattern": conversation.get("assessment_pattern"),
                "created_at": conversation.get("created_at"),
                "updated_at": conversation.get("updated_at"),
                "last_message_date": last.get("created_at") if last else None,
                "preview": build_preview(last.get("content")) if last else NO_MESSAGES_PREVIEW,
                "message_count": len(messages),
            })
        summaries.sort(
            key=lambda s: (as_utc(s["last_message_date"] or s["updated_at"]), str(s["id"])),
            reverse=True,
        )
        return summaries

    async def touch(self, conversation_id: str, at: datetime | None = None) -> None:
        """刷新对话 updated_at"""
        _ = await self.store.update(CONVERSATIONS, str(conversation_id), {"updated_at": at or utc_now()})

    async def delete(self, conversation_id: str, user_id: str) -> bool:
        """先删消息再删对话；不存在或无权时返回 False 且无副作用"""
        async with self.locks.hold(str(conversation_id)):
            conversation = await self.get(conversation_id, user_id)
            if conversation is None:
                return False

            removed = await self.store.delete_where(MESSAGES, {"conversation_id": str(conversation_id)})
            deleted = await self.store.delete(CONVERSATIONS, str(conversation_id))
            if not deleted:
                logger.error(
                    "Conversation %s messages removed (%s) but conversation row was not deleted",
                    conversation_id, removed,
                )
                raise PersistenceError(f"Failed to delete conversation {conversation_id}")

        logger.info("Conversation %s deleted with %s messages", conversation_id, removed)
        return True

    async def update_assessment_links(
        self,
        conversation_id: str,
        user_id: str,
        assessment_id: str | None = None,
        pattern: str | None = None,
    ) -> bool:
        """重新关联评估；未提供 pattern 时从评估快照"""
        conversation = await self.get(conversation_id, user_id)
        if conversation is None:
            logger.warning("Conversation %s not found for user %s", conversation_id, user_id)
            return False

        if assessment_id:
            assessment = await self._owned_assessment(assessment_id, user_id)
            if assessment is None:
                logger.warning(
                    "Assessment %s not found or not owned by %s; links unchanged", assessment_id, user_id
                )
                return False
            if pattern is None:
                raw_pattern = assessment.get("pattern")
                pattern = str(raw_pattern) if raw_pattern is not None else None

        updated = await self.store.update(CONVERSATIONS, str(conversation_id), {
            "assessment_id": str(assessment_id) if assessment_id else None,
            "assessment_pattern": pattern,
            "updated_at": utc_now(),
        })
        if updated is None:
            logger.error("Failed to update assessment links for conversation %s", conversation_id)
            return False
        logger.info(
            "Conversation %s linked to assessment %s pattern=%s", conversation_id, assessment_id, pattern
        )
        return True
