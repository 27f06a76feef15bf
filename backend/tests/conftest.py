"""Pytest配置文件"""
import inspect
import sys
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.main import app
from app.database import Base, get_db
from app.models import Assessment, ChatMessage, Conversation
from app.services.assessment_repository import AssessmentRepository
from app.services.conversation_registry import ConversationRegistry
from app.services.message_threader import MessageThreader
from app.services.record_store import MemoryRecordStore
from app.services.reply_generator import MockReplyGenerator
from app.utils.deps import get_current_user_id, get_reply_generator_dependency
from app.utils.keyed_lock import KeyedLock

# 使用内存数据库进行测试
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 导入模型以注册到 Base.metadata
_REGISTERED_MODELS = (Assessment, Conversation, ChatMessage)

# 测试请求通过该请求头切换当前用户
TEST_USER_HEADER = "X-Test-User"
DEFAULT_TEST_USER = "user-1"

VALID_ASSESSMENT: dict[str, object] = {
    "age": "18-24",
    "pattern": "regular",
    "cycle_length": "26-30",
    "period_duration": "4-5",
    "flow_heaviness": "moderate",
    "pain_level": "mild",
    "physical_symptoms": ["Bloating", "Headaches"],
    "emotional_symptoms": ["Irritability"],
    "other_symptoms": ["Fatigue"],
    "recommendations": [{"title": "Track Your Cycle", "description": "Keep a log of each period."}],
}


@pytest_asyncio.fixture
async def test_engine():
    """创建测试数据库引擎"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """创建测试会话"""
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """创建测试客户端，当前用户由 X-Test-User 请求头决定"""
    async def override_get_db():
        yield test_session

    async def override_user(request: Request) -> str:
        return str(request.headers.get(TEST_USER_HEADER) or DEFAULT_TEST_USER)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = override_user
    app.dependency_overrides[get_reply_generator_dependency] = MockReplyGenerator

    transport_kwargs: dict[str, Any] = {"app": app}
    if "lifespan" in inspect.signature(ASGITransport.__init__).parameters:
        transport_kwargs["lifespan"] = "off"
    transport = ASGITransport(**transport_kwargs)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def assessments(store: MemoryRecordStore) -> AssessmentRepository:
    return AssessmentRepository(store)


@pytest.fixture
def registry(store: MemoryRecordStore, assessments: AssessmentRepository, locks: KeyedLock) -> ConversationRegistry:
    return ConversationRegistry(store, assessments, locks)


@pytest.fixture
def threader(store: MemoryRecordStore, registry: ConversationRegistry, locks: KeyedLock) -> MessageThreader:
    return MessageThreader(store, registry, locks)
