"""助手回复生成

配置了 OpenAI key 时使用 LangChain ChatOpenAI，否则使用基于关键词的模拟回复。
生成失败由调用方降级到 build_fallback_reply。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from ..config import get_settings
from ..errors import UpstreamGenerationError

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "Hello! I'm here to have a conversation with you. How can I help you today?"


@dataclass
class ReplyContext:
    """生成一条助手回复所需的上下文"""
    message: str
    history: list[dict[str, str]] = field(default_factory=list)
    assessment_pattern: str | None = None
    assessment: dict[str, object] | None = None

    @property
    def is_initial(self) -> bool:
        return not self.history


class ReplyGenerator(Protocol):
    async def generate(self, context: ReplyContext) -> str: ...


def _assessment_opener(assessment: dict[str, object] | None, pattern: str | None) -> str | None:
    if assessment:
        pattern = str(assessment.get("pattern") or pattern or "")
        pain = assessment.get("pain_level")
        cycle = assessment.get("cycle_length")
        if pattern and pain and cycle:
            return (
                f"Hello! I see you've shared your menstrual health assessment results showing a {pattern} pattern. "
                f"With a {pain} pain level and {cycle}-day cycles, there's definitely valuable information "
                "we can explore together. What aspects of your results would you like to discuss first?"
            )
    if pattern:
        return (
            f"I see you've completed an assessment showing a {pattern} pattern! I'm here to help you understand "
            "and explore your results. What questions do you have?"
        )
    return None


def build_fallback_reply(pattern: str | None = None, assessment: dict[str, object] | None = None) -> str:
    """生成服务不可用时的本地回复"""
    opener = _assessment_opener(assessment, pattern)
    return opener or DEFAULT_GREETING


# (关键词, 回复) 按顺序匹配
_FOLLOW_UP_REPLIES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("thank",), "You're very welcome! I'm glad I could help. Is there anything else you'd like to explore or discuss?"),
    (("hello", "hey"), DEFAULT_GREETING),
    (("pain", "cramp", "hurt"),
     "Period pain is common, but it shouldn't stop you from living your life. Tracking when it starts "
     "and how long it lasts can help. If pain is severe, please talk to a healthcare provider."),
    (("worried", "concern", "scared", "normal"),
     "It's completely understandable to have questions about this. Many people experience similar "
     "patterns, and talking to a healthcare provider can give you peace of mind."),
    (("explain", "tell me more", "elaborate"),
     "I'd be happy to elaborate! Let me break that down further for you and provide some additional context."),
    (("help", "advice", "suggest"),
     "I'm here to help! Based on our conversation so far, I have some thoughts that might be useful for you."),
)

_DEFAULT_FOLLOW_UP = (
    "That's a thoughtful question! Let me share some insights that might help address what you're asking about."
)


class MockReplyGenerator:
    """关键词匹配的模拟回复，不依赖外部服务"""

    async def generate(self, context: ReplyContext) -> str:
        if context.is_initial:
            opener = _assessment_opener(context.assessment, context.assessment_pattern)
            if opener:
                return opener

        lower = context.message.lower()
        if context.assessment_pattern and ("assessment" in lower or "result" in lower):
            return (
                f"Based on your {context.assessment_pattern} assessment, this is an interesting area to explore. "
                "What specific aspects resonate most with your experience?"
            )
        for keywords, reply in _FOLLOW_UP_REPLIES:
            if any(k in lower for k in keywords):
                return reply
        return _DEFAULT_FOLLOW_UP


class LLMReplyGenerator:
    """基于 ChatOpenAI 的回复生成"""

    SYSTEM_PROMPT: str = """You are Dottie, a supportive menstrual health assistant.
Answer in clear, friendly language. You do not diagnose; when symptoms sound severe,
encourage the user to see a healthcare provider.

## User assessment
{assessment}
"""

    def __init__(self, max_history: int | None = None):
        settings = get_settings()
        self.llm: ChatOpenAI = ChatOpenAI(
            model=settings.ai_model,
            api_key=SecretStr(settings.openai_api_key),
            base_url=settings.openai_base_url,
            temperature=0.7,
        )
        self.max_history: int = max_history if max_history is not None else settings.chat_history_max_messages

    def _describe_assessment(self, context: ReplyContext) -> str:
        if context.assessment:
            lines: list[str] = []
            for key in ("pattern", "age", "cycle_length", "period_duration", "flow_heaviness", "pain_level"):
                value = context.assessment.get(key)
                if value:
                    lines.append(f"- {key}: {value}")
            for key in ("physical_symptoms", "emotional_symptoms", "other_symptoms"):
                value = context.assessment.get(key)
                if isinstance(value, list) and value:
                    lines.append(f"- {key}: {', '.join(str(v) for v in value)}")
            if lines:
                return "\n".join(lines)
        if context.assessment_pattern:
            return f"- pattern: {context.assessment_pattern}"
        return "No assessment linked."

    def build_messages(self, context: ReplyContext) -> list[BaseMessage]:
        messages: list[BaseMessage] = [
            SystemMessage(content=self.SYSTEM_PROMPT.format(assessment=self._describe_assessment(context)))
        ]
        for msg in context.history[-self.max_history:]:
            if msg["role"] == "user":
                messages.append(HumanMessage(content=msg["content"]))
            else:
                messages.append(AIMessage(content=msg["content"]))
        messages.append(HumanMessage(content=context.message))
        return messages

    async def generate(self, context: ReplyContext) -> str:
        try:
            response = await self.llm.agenerate([self.build_messages(context)])
            answer = response.generations[0][0].text
        except Exception as e:
            raise UpstreamGenerationError(f"AI service call failed: {e}") from e
        if not answer or not answer.strip():
            raise UpstreamGenerationError("AI service returned an empty reply")
        return answer.strip()


@lru_cache
def get_reply_generator() -> ReplyGenerator:
    """按配置选择回复生成器"""
    settings = get_settings()
    if settings.openai_api_key:
        logger.info("Using LLM reply generator model=%s", settings.ai_model)
        return LLMReplyGenerator()
    logger.info("No OpenAI API key configured; using mock reply generator")
    return MockReplyGenerator()
