"""依赖注入"""
import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..services.assessment_repository import AssessmentRepository
from ..services.chat_orchestrator import ChatOrchestrator
from ..services.conversation_registry import ConversationRegistry
from ..services.message_threader import MessageThreader
from ..services.record_store import RecordStore, SqlRecordStore
from ..services.reply_generator import ReplyGenerator, get_reply_generator
from .keyed_lock import conversation_locks
from .security import decode_token

security = HTTPBearer(auto_error=False)

logger = logging.getLogger(__name__)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> str:
    """从 Bearer 令牌的 sub 声明获取当前用户 id"""
    if not credentials:
        logger.info("auth: missing credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if payload is None:
        logger.info("auth: token decode failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    sub = payload.get("sub")
    if sub is None or not str(sub).strip():
        logger.info("auth: token missing sub")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return str(sub)


def get_record_store(db: Annotated[AsyncSession, Depends(get_db)]) -> RecordStore:
    return SqlRecordStore(db)


def get_assessment_repository(store: Annotated[RecordStore, Depends(get_record_store)]) -> AssessmentRepository:
    return AssessmentRepository(store)


def get_conversation_registry(
    store: Annotated[RecordStore, Depends(get_record_store)],
    assessments: Annotated[AssessmentRepository, Depends(get_assessment_repository)],
) -> ConversationRegistry:
    return ConversationRegistry(store, assessments, conversation_locks)


def get_message_threader(
    store: Annotated[RecordStore, Depends(get_record_store)],
    registry: Annotated[ConversationRegistry, Depends(get_conversation_registry)],
) -> MessageThreader:
    return MessageThreader(store, registry, conversation_locks)


def get_reply_generator_dependency() -> ReplyGenerator:
    return get_reply_generator()


def get_chat_orchestrator(
    registry: Annotated[ConversationRegistry, Depends(get_conversation_registry)],
    threader: Annotated[MessageThreader, Depends(get_message_threader)],
    generator: Annotated[ReplyGenerator, Depends(get_reply_generator_dependency)],
) -> ChatOrchestrator:
    return ChatOrchestrator(registry, threader, generator)
