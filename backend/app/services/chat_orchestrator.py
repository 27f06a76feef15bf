"""聊天回合编排

一次回合：校验 → (创建对话) → 写入用户消息 → 生成回复 → 写入助手消息。
回复生成失败或超时时使用本地降级回复；已写入的用户消息不会回滚。
整个回合持有该对话的锁，同一对话的并发回合按顺序执行。
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from ..config import get_settings
from ..errors import NotOwnedOrNotFoundError, UpstreamGenerationError, ValidationError
from ..utils.validators import validate_message_content
from .conversation_registry import ConversationRegistry
from .message_threader import ROLE_ASSISTANT, ROLE_USER, MessageThreader
from .reply_generator import ReplyContext, ReplyGenerator, build_fallback_reply

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    START = "start"
    ASSESSMENT_VALIDATED = "assessment_validated"
    CONVERSATION_CREATED = "conversation_created"
    USER_MESSAGE_PERSISTED = "user_message_persisted"
    REPLY_GENERATED = "reply_generated"
    ASSISTANT_MESSAGE_PERSISTED = "assistant_message_persisted"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ChatTurn:
    conversation_id: str
    user_message: dict[str, object]
    assistant_message: dict[str, object]
    state: TurnState
    states: list[TurnState] = field(default_factory=list)
    used_fallback: bool = False


class _Turn:
    """记录回合经过的状态"""

    def __init__(self, kind: str):
        self.kind: str = kind
        self.states: list[TurnState] = [TurnState.START]
        self.conversation_id: str | None = None

    def advance(self, state: TurnState) -> None:
        self.states.append(state)
        logger.debug("Chat turn %s conversation=%s -> %s", self.kind, self.conversation_id, state.value)

    def fail(self, reason: object) -> None:
        self.states.append(TurnState.FAILED)
        logger.warning(
            "Chat turn %s failed conversation=%s after %s: %s",
            self.kind, self.conversation_id, [s.value for s in self.states[:-1]], reason,
        )


class ChatOrchestrator:
    """串联对话注册表、消息线程与回复生成"""

    def __init__(
        self,
        registry: ConversationRegistry,
        threader: MessageThreader,
        generator: ReplyGenerator,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.registry: ConversationRegistry = registry
        self.threader: MessageThreader = threader
        self.generator: ReplyGenerator = generator
        self.timeout: float = timeout if timeout is not None else settings.ai_reply_timeout_seconds
        self.max_history: int = settings.chat_history_max_messages

    @staticmethod
    def _check_message(message: object, turn: _Turn) -> None:
        is_valid, error = validate_message_content(message)
        if not is_valid:
            turn.fail(error)
            raise ValidationError([error])

    async def _load_assessment(self, conversation: dict[str, object]) -> dict[str, object] | None:
        assessment_id = conversation.get("assessment_id")
        if not assessment_id:
            return None
        assessment = await self.registry.assessments.find_by_id(str(assessment_id))
        if assessment is None:
            logger.warning(
                "Linked assessment %s of conversation %s is no longer readable",
                assessment_id, conversation.get("id"),
            )
        return assessment

    async def _generate(self, context: ReplyContext) -> tuple[str, bool]:
        """返回 (回复, 是否降级)"""
        try:
            reply = await asyncio.wait_for(self.generator.generate(context), timeout=self.timeout)
            if not isinstance(reply, str) or not reply.strip():
                raise UpstreamGenerationError("Reply generator returned an empty reply")
            return reply, False
        except asyncio.TimeoutError:
            logger.warning("Reply generation timed out after %ss; using fallback reply", self.timeout)
        except Exception:
            logger.exception("Reply generation failed; using fallback reply")
        return build_fallback_reply(context.assessment_pattern, context.assessment), True

    def _history(self, thread: list[dict[str, object]]) -> list[dict[str, str]]:
        return [
            {"role": str(m.get("role")), "content": str(m.get("content") or "")}
            for m in thread[-self.max_history:]
        ]

    async def _complete_turn(
        self,
        turn: _Turn,
        user_id: str,
        conversation: dict[str, object],
        message: str,
        assessment: dict[str, object] | None,
    ) -> ChatTurn:
        conversation_id = str(conversation["id"])
        history = self._history(await self.threader.get_ordered_thread(conversation_id))

        try:
            user_message = await self.threader.insert_message_held(conversation_id, {
                "role": ROLE_USER,
                "content": message,
                "user_id": user_id,
            })
        except Exception as e:
            turn.fail(e)
            raise
        turn.advance(TurnState.USER_MESSAGE_PERSISTED)

        return await self._reply_to(turn, conversation, user_message, history, assessment)

    async def _reply_to(
        self,
        turn: _Turn,
        conversation: dict[str, object],
        user_message: dict[str, object],
        history: list[dict[str, str]],
        assessment: dict[str, object] | None,
    ) -> ChatTurn:
        conversation_id = str(conversation["id"])
        pattern = conversation.get("assessment_pattern")
        context = ReplyContext(
            message=str(user_message["content"]),
            history=history,
            assessment_pattern=str(pattern) if pattern else None,
            assessment=assessment,
        )
        reply, used_fallback = await self._generate(context)
        turn.advance(TurnState.REPLY_GENERATED)

        try:
            assistant_message = await self.threader.insert_message_held(conversation_id, {
                "role": ROLE_ASSISTANT,
                "content": reply,
                "parent_message_id": user_message["id"],
            })
        except Exception as e:
            turn.fail(e)
            raise
        turn.advance(TurnState.ASSISTANT_MESSAGE_PERSISTED)
        turn.advance(TurnState.DONE)

        logger.info(
            "Chat turn %s completed conversation=%s fallback=%s",
            turn.kind, conversation_id, used_fallback,
        )
        return ChatTurn(
            conversation_id=conversation_id,
            user_message=user_message,
            assistant_message=assistant_message,
            state=TurnState.DONE,
            states=list(turn.states),
            used_fallback=used_fallback,
        )

    async def _answer_dangling(self, conversation: dict[str, object]) -> None:
        """上一回合的用户消息没有得到回复时，补一条降级回复以保持角色交替"""
        conversation_id = str(conversation["id"])
        latest = await self.threader.get_latest_message(conversation_id)
        if latest is None or latest.get("role") != ROLE_USER:
            return
        logger.warning("Conversation %s has an unanswered user message %s", conversation_id, latest["id"])
        pattern = conversation.get("assessment_pattern")
        _ = await self.threader.insert_message_held(conversation_id, {
            "role": ROLE_ASSISTANT,
            "content": build_fallback_reply(str(pattern) if pattern else None),
        })

    async def start_conversation(
        self,
        user_id: str,
        message: str,
        assessment_id: str | None = None,
    ) -> ChatTurn:
        """创建对话并完成第一回合"""
        turn = _Turn("start")
        self._check_message(message, turn)

        assessment: dict[str, object] | None = None
        if assessment_id:
            assessment = await self.registry.assessments.find_by_id(str(assessment_id))
            if assessment is None or str(assessment.get("user_id")) != str(user_id):
                turn.fail(f"assessment {assessment_id} not found")
                raise NotOwnedOrNotFoundError(f"Assessment {assessment_id} not found")
            turn.advance(TurnState.ASSESSMENT_VALIDATED)

        try:
            conversation_id = await self.registry.create(user_id, assessment_id)
        except Exception as e:
            turn.fail(e)
            raise
        turn.conversation_id = conversation_id
        turn.advance(TurnState.CONVERSATION_CREATED)

        conversation = await self.registry.get(conversation_id, user_id)
        if conversation is None:
            turn.fail("conversation vanished after create")
            raise NotOwnedOrNotFoundError(f"Conversation {conversation_id} not found")
        async with self.threader.hold(conversation_id):
            return await self._complete_turn(turn, user_id, conversation, message, assessment)

    async def continue_conversation(self, user_id: str, conversation_id: str, message: str) -> ChatTurn:
        """在已有对话上完成一回合"""
        turn = _Turn("continue")
        turn.conversation_id = str(conversation_id)
        self._check_message(message, turn)

        conversation = await self.registry.get(conversation_id, user_id)
        if conversation is None:
            turn.fail("conversation not found")
            raise NotOwnedOrNotFoundError(f"Conversation {conversation_id} not found")

        assessment = await self._load_assessment(conversation)
        async with self.threader.hold(conversation_id):
            await self._answer_dangling(conversation)
            return await self._complete_turn(turn, user_id, conversation, message, assessment)

    async def send(
        self,
        user_id: str,
        message: str,
        conversation_id: str | None = None,
        assessment_id: str | None = None,
    ) -> ChatTurn:
        if not conversation_id:
            return await self.start_conversation(user_id, message, assessment_id)

        if assessment_id:
            conversation = await self.registry.get(conversation_id, user_id)
            if conversation is not None and not conversation.get("assessment_id"):
                _ = await self.registry.update_assessment_links(conversation_id, user_id, assessment_id)
        return await self.continue_conversation(user_id, conversation_id, message)

    async def edit_and_regenerate(
        self,
        user_id: str,
        conversation_id: str,
        message_id: str,
        content: str,
    ) -> ChatTurn:
        """编辑用户消息并重新生成回复"""
        turn = _Turn("edit")
        turn.conversation_id = str(conversation_id)
        self._check_message(content, turn)

        conversation = await self.registry.get(conversation_id, user_id)
        if conversation is None:
            turn.fail("conversation not found")
            raise NotOwnedOrNotFoundError(f"Conversation {conversation_id} not found")

        assessment = await self._load_assessment(conversation)
        async with self.threader.hold(conversation_id):
            try:
                updated = await self.threader.edit_message_held(conversation_id, message_id, user_id, content)
            except Exception as e:
                turn.fail(e)
                raise
            turn.advance(TurnState.USER_MESSAGE_PERSISTED)

            thread = await self.threader.get_ordered_thread(conversation_id)
            history = self._history(thread[:-1])
            return await self._reply_to(turn, conversation, updated, history, assessment)
