"""评估记录模型"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


class Assessment(Base):
    """评估表

    同一张表承载两种存储编码：
    - legacy: 整个问卷以嵌套 JSON 存在 assessment_data 列
    - current: 每个字段一列，数组/对象字段单独序列化为 JSON 文本
    """
    __tablename__: str = "assessments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    assessment_data: Mapped[str | None] = mapped_column(Text, nullable=True)

    age: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pattern: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cycle_length: Mapped[str | None] = mapped_column(String(32), nullable=True)
    period_duration: Mapped[str | None] = mapped_column(String(32), nullable=True)
    flow_heaviness: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pain_level: Mapped[str | None] = mapped_column(String(32), nullable=True)

    physical_symptoms: Mapped[str | None] = mapped_column(Text, nullable=True)
    emotional_symptoms: Mapped[str | None] = mapped_column(Text, nullable=True)
    other_symptoms: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommendations: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
