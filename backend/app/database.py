"""数据库配置"""
import importlib
import logging
from pathlib import Path
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from .config import get_settings

settings = get_settings()

logger = logging.getLogger(__name__)

if settings.database_url.startswith("sqlite"):
    parts = settings.database_url.split("///", 1)
    if len(parts) == 2:
        db_path = parts[1]
        if db_path.startswith("./"):
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug and not settings.database_url.endswith(":memory:"),
    future=True
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)

class Base(DeclarativeBase):
    pass


# 旧版本数据库中可能缺失的可空列（表名 -> [(列名, 类型)]）
_NULLABLE_COLUMN_BACKFILL: dict[str, list[tuple[str, str]]] = {
    "assessments": [
        ("assessment_data", "TEXT"),
        ("age", "VARCHAR(32)"),
        ("pattern", "VARCHAR(64)"),
        ("cycle_length", "VARCHAR(32)"),
        ("period_duration", "VARCHAR(32)"),
        ("flow_heaviness", "VARCHAR(32)"),
        ("pain_level", "VARCHAR(32)"),
        ("physical_symptoms", "TEXT"),
        ("emotional_symptoms", "TEXT"),
        ("other_symptoms", "TEXT"),
        ("recommendations", "TEXT"),
    ],
    "conversations": [
        ("assessment_id", "VARCHAR(36)"),
        ("assessment_pattern", "VARCHAR(64)"),
    ],
    "chat_messages": [
        ("user_id", "VARCHAR(64)"),
        ("parent_message_id", "VARCHAR(36)"),
        ("edited_at", "DATETIME"),
    ],
}


async def get_db():
    """获取数据库会话"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """初始化数据库表"""
    for module_name in (
        "app.models.assessment",
        "app.models.conversation",
    ):
        _ = importlib.import_module(module_name)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        if engine.url.get_backend_name() == "sqlite":
            for table_name, columns in _NULLABLE_COLUMN_BACKFILL.items():
                try:
                    cols_result = await conn.execute(text(f"PRAGMA table_info({table_name})"))
                    existing = {row[1] for row in cols_result.fetchall()}
                    for column_name, column_type in columns:
                        if column_name in existing:
                            continue
                        _ = await conn.execute(
                            text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_type}")
                        )
                        logger.info("补充缺失列: %s.%s", table_name, column_name)
                except Exception:
                    logger.exception("检查表结构失败: %s", table_name)
