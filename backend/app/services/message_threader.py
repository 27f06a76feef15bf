"""消息线程

负责消息写入时的父子链接、排序与编辑。
同一对话内的写入通过 KeyedLock 串行化，保证“读最新消息 → 链接 → 写入”原子执行。
需要把多步操作放进同一临界区的调用方（聊天回合）先 hold()，再调用 *_held 方法。
"""
from __future__ import annotations

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from datetime import timedelta

from ..errors import NotFoundError, NotOwnedOrNotFoundError, OwnershipError, ValidationError
from ..utils.keyed_lock import KeyedLock
from ..utils.validators import validate_message_content
from .conversation_registry import (
    CONVERSATIONS,
    MESSAGES,
    ConversationRegistry,
    as_utc,
    utc_now,
)
from .record_store import RecordStore

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
VALID_ROLES: tuple[str, ...] = (ROLE_USER, ROLE_ASSISTANT)

_TICK = timedelta(microseconds=1)


def _choose_parent(latest: dict[str, object] | None, supplied_parent_id: object) -> str | None:
    """已有消息时链接到最新消息，空对话的第一条消息没有父消息"""
    if latest is not None:
        latest_id = str(latest["id"])
        if supplied_parent_id and str(supplied_parent_id) != latest_id:
            logger.debug("Supplied parent %s overridden by latest message %s", supplied_parent_id, latest_id)
        return latest_id
    if supplied_parent_id:
        logger.debug("Supplied parent %s ignored for the first message", supplied_parent_id)
    return None


def _check_new_message(message_data: dict[str, object]) -> None:
    """用户消息受长度限制；助手回复只要求非空"""
    role = message_data.get("role")
    if role not in VALID_ROLES:
        raise ValidationError([f"Invalid message role: {role}"])
    content = message_data.get("content")
    if role == ROLE_USER:
        is_valid, error = validate_message_content(content)
        if not is_valid:
            raise ValidationError([error])
    elif not isinstance(content, str) or not content.strip():
        raise ValidationError(["Assistant message content is required"])


class MessageThreader:
    """消息线程管理"""

    def __init__(
        self,
        store: RecordStore,
        registry: ConversationRegistry,
        locks: KeyedLock | None = None,
    ):
        self.store: RecordStore = store
        self.registry: ConversationRegistry = registry
        self.locks: KeyedLock = locks if locks is not None else registry.locks

    def hold(self, conversation_id: str) -> AbstractAsyncContextManager[None]:
        """持有对话锁；锁不可重入，持有期间只能调用 *_held 方法"""
        return self.locks.hold(str(conversation_id))

    async def get_ordered_thread(self, conversation_id: str) -> list[dict[str, object]]:
        """按 (created_at, id) 升序返回全部消息"""
        return await self.registry.list_messages(conversation_id)

    async def get_latest_message(self, conversation_id: str) -> dict[str, object] | None:
        thread = await self.get_ordered_thread(conversation_id)
        return thread[-1] if thread else None

    async def resolve_parent(self, conversation_id: str, supplied_parent_id: str | None = None) -> str | None:
        """计算新消息的父消息 id"""
        latest = await self.get_latest_message(conversation_id)
        return _choose_parent(latest, supplied_parent_id)

    async def insert_message(self, conversation_id: str, message_data: dict[str, object]) -> dict[str, object]:
        """
        写入一条消息

        message_data: role, content, 可选 user_id / parent_message_id / id
        调用方提供的 parent_message_id 不会被采用，父消息总是当前最新消息
        """
        _check_new_message(message_data)
        async with self.hold(conversation_id):
            return await self.insert_message_held(conversation_id, message_data)

    async def insert_message_held(
        self,
        conversation_id: str,
        message_data: dict[str, object],
    ) -> dict[str, object]:
        """同 insert_message，调用方已持有该对话的锁"""
        _check_new_message(message_data)
        role = message_data["role"]
        if await self.store.find_by_id(CONVERSATIONS, str(conversation_id)) is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        latest = await self.get_latest_message(conversation_id)
        if latest is None and role != ROLE_USER:
            raise ValidationError(["The first message of a conversation must come from the user"])
        if latest is not None and latest.get("role") == role:
            raise ValidationError([f"Message roles must alternate; last message is already {role}"])

        parent_id = _choose_parent(latest, message_data.get("parent_message_id"))

        created_at = utc_now()
        if latest is not None:
            previous = as_utc(latest.get("created_at"))
            if created_at <= previous:
                created_at = previous + _TICK

        user_id = message_data.get("user_id")
        record: dict[str, object] = {
            "id": str(message_data.get("id") or uuid.uuid4()),
            "conversation_id": str(conversation_id),
            "role": role,
            "content": message_data["content"],
            "user_id": str(user_id) if role == ROLE_USER and user_id else None,
            "parent_message_id": parent_id,
            "created_at": created_at,
            "edited_at": None,
        }
        persisted = await self.store.create(MESSAGES, record)
        await self.registry.touch(conversation_id, created_at)

        logger.debug(
            "Message %s (%s) appended to conversation %s parent=%s",
            record["id"], role, conversation_id, parent_id,
        )
        return persisted

    async def insert_for_user(
        self,
        conversation_id: str,
        user_id: str,
        message_data: dict[str, object],
    ) -> dict[str, object]:
        """先校验对话归属，再写入"""
        if await self.registry.get(conversation_id, user_id) is None:
            raise NotOwnedOrNotFoundError(f"Conversation {conversation_id} not found")
        data = dict(message_data)
        if data.get("role") == ROLE_USER:
            data["user_id"] = user_id
        return await self.insert_message(conversation_id, data)

    async def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        user_id: str,
        new_content: str,
    ) -> dict[str, object]:
        """
        编辑用户消息，并删除其后的所有消息

        只能编辑自己发送的 user 消息；编辑后该消息成为线程末尾。
        """
        is_valid, error = validate_message_content(new_content)
        if not is_valid:
            raise ValidationError([error])
        async with self.hold(conversation_id):
            return await self.edit_message_held(conversation_id, message_id, user_id, new_content)

    async def edit_message_held(
        self,
        conversation_id: str,
        message_id: str,
        user_id: str,
        new_content: str,
    ) -> dict[str, object]:
        """同 edit_message，调用方已持有该对话的锁"""
        is_valid, error = validate_message_content(new_content)
        if not is_valid:
            raise ValidationError([error])
        if await self.registry.get(conversation_id, user_id) is None:
            raise NotOwnedOrNotFoundError(f"Conversation {conversation_id} not found")

        thread = await self.get_ordered_thread(conversation_id)
        index = next((i for i, m in enumerate(thread) if str(m["id"]) == str(message_id)), None)
        if index is None:
            raise NotFoundError(f"Message {message_id} not found")

        target = thread[index]
        if target.get("role") != ROLE_USER:
            raise ValidationError(["Only user messages can be edited"])
        if str(target.get("user_id")) != str(user_id):
            raise OwnershipError(f"Message {message_id} is not owned by user {user_id}")

        later = thread[index + 1:]
        for message in later:
            _ = await self.store.delete(MESSAGES, str(message["id"]))

        updated = await self.store.update(MESSAGES, str(message_id), {
            "content": new_content,
            "edited_at": utc_now(),
        })
        if updated is None:
            raise NotFoundError(f"Message {message_id} not found")
        await self.registry.touch(conversation_id)

        logger.info(
            "Message %s edited in conversation %s; %s later messages removed",
            message_id, conversation_id, len(later),
        )
        return updated
