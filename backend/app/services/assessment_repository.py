"""评估仓储

所有读写都经过格式识别与转换，调用方只会看到规范 API 结构。
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from ..errors import NotFoundError, OwnershipError, PersistenceError, ValidationError
from ..utils.validators import validate_assessment_fields
from .assessment_schema import (
    AssessmentFormat,
    api_to_fields,
    detect_payload_format,
    normalize_payload,
    to_api,
    to_legacy_blob,
    to_storage,
)
from .record_store import RecordStore

logger = logging.getLogger(__name__)

TABLE = "assessments"


def validate_assessment_payload(payload: object) -> list[str]:
    """校验请求数据（任一格式），返回错误列表"""
    if not isinstance(payload, dict) or not payload:
        return ["Assessment data is required"]
    try:
        fields = normalize_payload(payload)
    except ValidationError as e:
        return list(e.errors)
    return validate_assessment_fields(fields)


def _sort_key(item: dict[str, object]) -> tuple[str, str]:
    created = item.get("created_at")
    stamp = created.isoformat() if isinstance(created, datetime) else str(created or "")
    return stamp, str(item.get("id") or "")


class AssessmentRepository:
    """评估 CRUD 门面"""

    def __init__(self, store: RecordStore):
        self.store: RecordStore = store

    async def create(self, payload: dict[str, object], user_id: str) -> dict[str, object]:
        """创建评估，格式由请求数据决定"""
        errors = validate_assessment_payload(payload)
        if errors:
            raise ValidationError(errors)

        now = datetime.now(timezone.utc)
        record: dict[str, object] = {
            "id": str(uuid.uuid4()),
            "user_id": str(user_id),
            "created_at": now,
            "updated_at": now,
        }
        record.update(to_storage(payload))

        persisted = await self.store.create(TABLE, record)
        logger.info(
            "Assessment %s created for user %s format=%s",
            record["id"], user_id, detect_payload_format(payload).value,
        )
        api = to_api(persisted)
        if api is None:
            raise PersistenceError(f"Assessment {record['id']} could not be read back")
        return api

    async def find_by_id(self, assessment_id: str) -> dict[str, object] | None:
        """按 id 查询，不存在或格式无法识别时返回 None"""
        raw = await self.store.find_by_id(TABLE, str(assessment_id))
        if raw is None:
            return None
        return to_api(raw)

    async def list_by_user(self, user_id: str) -> list[dict[str, object]]:
        """列出用户的全部评估（新→旧），跳过无法识别的记录"""
        rows = await self.store.find_by(TABLE, "user_id", str(user_id))
        items: list[dict[str, object]] = []
        for row in rows:
            api = to_api(row)
            if api is None:
                logger.warning("Skipping malformed assessment %s for user %s", row.get("id"), user_id)
                continue
            items.append(api)
        items.sort(key=_sort_key, reverse=True)
        return items

    async def update(
        self,
        assessment_id: str,
        payload: dict[str, object],
        user_id: str | None = None,
    ) -> dict[str, object]:
        """合并更新；id、user_id、created_at 不可修改"""
        raw = await self.store.find_by_id(TABLE, str(assessment_id))
        if raw is None:
            raise NotFoundError(f"Assessment {assessment_id} not found")
        if user_id is not None and str(raw.get("user_id")) != str(user_id):
            raise OwnershipError(f"Assessment {assessment_id} is not owned by user {user_id}")

        if not isinstance(payload, dict) or not payload:
            raise ValidationError(["Assessment data is required"])
        incoming = normalize_payload(payload)

        existing = to_api(raw)
        merged = api_to_fields(existing) if existing is not None else {}
        merged.update(incoming)

        errors = validate_assessment_fields(merged)
        if errors:
            raise ValidationError(errors)

        if detect_payload_format(payload) == AssessmentFormat.LEGACY:
            storage_payload: dict[str, object] = {"assessment_data": to_legacy_blob(merged)}
        else:
            storage_payload = merged

        changes = to_storage(storage_payload)
        changes["updated_at"] = datetime.now(timezone.utc)

        updated = await self.store.update(TABLE, str(assessment_id), changes)
        if updated is None:
            raise NotFoundError(f"Assessment {assessment_id} not found")
        logger.info("Assessment %s updated", assessment_id)
        api = to_api(updated)
        if api is None:
            raise PersistenceError(f"Assessment {assessment_id} could not be read back")
        return api

    async def delete(self, assessment_id: str) -> bool:
        """删除评估，不存在时返回 False"""
        deleted = await self.store.delete(TABLE, str(assessment_id))
        if deleted:
            logger.info("Assessment %s deleted", assessment_id)
        return deleted

    async def validate_ownership(self, assessment_id: str, user_id: str) -> bool:
        """评估存在且属于该用户"""
        rows = await self.store.find_where(TABLE, {"id": str(assessment_id), "user_id": str(user_id)})
        return bool(rows)
