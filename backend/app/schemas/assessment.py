"""评估相关的Pydantic模式"""
from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class AssessmentSendRequest(BaseModel):
    """创建/更新评估请求，assessmentData 可为平铺结构或带 assessment_data 的旧结构"""
    assessment_data: dict[str, object] | None = Field(
        default=None, alias="assessmentData", description="评估数据"
    )

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True)


class AssessmentResponse(BaseModel):
    """规范化后的评估"""
    id: str
    user_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    age: str | None = None
    pattern: str | None = None
    cycle_length: str | None = None
    period_duration: str | None = None
    flow_heaviness: str | None = None
    pain_level: str | None = None
    physical_symptoms: list[str] = []
    emotional_symptoms: list[str] = []
    other_symptoms: list[str] = []
    recommendations: list[dict[str, object]] = []


class AssessmentDeleteResponse(BaseModel):
    message: str
    id: str
