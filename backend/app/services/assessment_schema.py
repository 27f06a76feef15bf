"""评估数据的双格式识别与转换

同一份评估在存储层有两种编码：
- legacy: assessment_data 列保存整份嵌套 JSON（camelCase，症状嵌套在 symptoms 下）
- current: 每个字段一列（snake_case），数组/对象字段各自序列化为 JSON 文本

记录在读取时只识别一次，得到 LegacyRecord / CurrentRecord，
之后按类型分派，不再在各处重复探测字段。
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import cast

from ..errors import MalformedStorageError, ValidationError

logger = logging.getLogger(__name__)


class AssessmentFormat(str, Enum):
    LEGACY = "legacy"
    CURRENT = "current"
    UNKNOWN = "unknown"


SCALAR_FIELDS: tuple[str, ...] = (
    "age",
    "pattern",
    "cycle_length",
    "period_duration",
    "flow_heaviness",
    "pain_level",
)
ARRAY_FIELDS: tuple[str, ...] = (
    "physical_symptoms",
    "emotional_symptoms",
    "other_symptoms",
    "recommendations",
)
# 有任一字段即视为 current 记录
CURRENT_MARKER_FIELDS: tuple[str, ...] = ("age", "pattern", "cycle_length")
META_FIELDS: tuple[str, ...] = ("id", "user_id", "created_at", "updated_at")

_WRAPPER_KEYS: tuple[str, ...] = ("assessment_data", "assessmentData")

_CAMEL_TO_SNAKE: dict[str, str] = {
    "cycleLength": "cycle_length",
    "periodDuration": "period_duration",
    "flowHeaviness": "flow_heaviness",
    "painLevel": "pain_level",
    "physicalSymptoms": "physical_symptoms",
    "emotionalSymptoms": "emotional_symptoms",
    "otherSymptoms": "other_symptoms",
}
_SNAKE_TO_CAMEL: dict[str, str] = {v: k for k, v in _CAMEL_TO_SNAKE.items()}

_SYMPTOM_GROUPS: dict[str, str] = {
    "physical": "physical_symptoms",
    "emotional": "emotional_symptoms",
    "other": "other_symptoms",
}


@dataclass(frozen=True)
class LegacyRecord:
    """legacy 编码的存储记录，blob 为解析后的 assessment_data"""
    record: dict[str, object]
    blob: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class CurrentRecord:
    """current 编码的存储记录"""
    record: dict[str, object]


AssessmentRecord = LegacyRecord | CurrentRecord


def _is_set(value: object) -> bool:
    return value is not None and value != ""


def _as_object(value: object) -> dict[str, object] | None:
    """dict 原样返回，JSON 对象字符串解析后返回，其余返回 None"""
    if isinstance(value, dict):
        return cast(dict[str, object], value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except (TypeError, ValueError):
            return None
        if isinstance(parsed, dict):
            return cast(dict[str, object], parsed)
    return None


def _legacy_wrapper(payload: object) -> dict[str, object] | None:
    if not isinstance(payload, dict):
        return None
    for key in _WRAPPER_KEYS:
        if key in payload:
            inner = _as_object(payload[key])
            if inner is not None:
                return inner
    return None


def detect_stored_format(record: object) -> AssessmentFormat:
    """识别存储记录的编码，不抛异常"""
    if not isinstance(record, dict):
        return AssessmentFormat.UNKNOWN
    if _is_set(record.get("assessment_data")):
        return AssessmentFormat.LEGACY
    if any(_is_set(record.get(f)) for f in CURRENT_MARKER_FIELDS):
        return AssessmentFormat.CURRENT
    return AssessmentFormat.UNKNOWN


def detect_payload_format(payload: object) -> AssessmentFormat:
    """识别请求数据的格式：带嵌套 assessment_data/assessmentData 对象即为 legacy"""
    if _legacy_wrapper(payload) is not None:
        return AssessmentFormat.LEGACY
    return AssessmentFormat.CURRENT


def parse_record(record: object) -> AssessmentRecord:
    """把存储记录转换为带标签的变体，未知格式抛出 MalformedStorageError"""
    fmt = detect_stored_format(record)
    if fmt == AssessmentFormat.UNKNOWN:
        record_id = record.get("id") if isinstance(record, dict) else None
        raise MalformedStorageError(f"Unrecognized assessment storage format id={record_id}")
    row = cast(dict[str, object], record)
    if fmt == AssessmentFormat.LEGACY:
        blob = _as_object(row.get("assessment_data"))
        if blob is None:
            logger.warning("Failed to parse assessment_data for assessment %s", row.get("id"))
            blob = {}
        return LegacyRecord(record=row, blob=blob)
    return CurrentRecord(record=row)


def classify_record(record: object) -> AssessmentRecord | None:
    """同 parse_record，未知格式记录日志并返回 None"""
    try:
        return parse_record(record)
    except MalformedStorageError as e:
        logger.warning("%s", e.message)
        return None


def extract_legacy_blob(payload: dict[str, object]) -> dict[str, object]:
    """取出 legacy 请求中的嵌套数据

    允许 {assessment_data: {...}} 以及外面再包一层 assessmentData，更深的嵌套直接拒绝
    """
    blob = _legacy_wrapper(payload)
    if blob is None:
        raise ValidationError(["assessment_data is required"])
    inner = _legacy_wrapper(blob)
    if inner is None:
        return blob
    if _legacy_wrapper(inner) is not None:
        raise ValidationError(["assessment data is nested too deeply"])
    return inner


def _coerce_other_symptoms(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return [trimmed] if trimmed else []
    if isinstance(value, list):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    return value


def _flatten_fields(source: dict[str, object]) -> dict[str, object]:
    """camelCase/嵌套 symptoms 统一为 snake_case 平铺字段，只保留出现过的键"""
    out: dict[str, object] = {}
    known = set(SCALAR_FIELDS) | set(ARRAY_FIELDS)
    for key, value in source.items():
        name = _CAMEL_TO_SNAKE.get(key, key)
        if name in known:
            out[name] = value

    symptoms = source.get("symptoms")
    if isinstance(symptoms, dict):
        for group, name in _SYMPTOM_GROUPS.items():
            if group in symptoms and name not in out:
                out[name] = symptoms[group]

    if "other_symptoms" in out:
        out["other_symptoms"] = _coerce_other_symptoms(out["other_symptoms"])
    return out


def normalize_payload(payload: dict[str, object]) -> dict[str, object]:
    """请求数据（任一格式）→ snake_case 平铺字段"""
    if detect_payload_format(payload) == AssessmentFormat.LEGACY:
        return _flatten_fields(extract_legacy_blob(payload))
    return _flatten_fields(payload)


def to_legacy_blob(fields: dict[str, object]) -> dict[str, object]:
    """平铺字段 → legacy 嵌套结构"""
    blob: dict[str, object] = {}
    for name in SCALAR_FIELDS:
        if name in fields:
            blob[_SNAKE_TO_CAMEL.get(name, name)] = fields[name]
    symptoms: dict[str, object] = {}
    for group, name in _SYMPTOM_GROUPS.items():
        if name in fields:
            symptoms[group] = fields[name]
    if symptoms:
        blob["symptoms"] = symptoms
    if "recommendations" in fields:
        blob["recommendations"] = fields["recommendations"]
    return blob


def _dump_json(value: object) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def to_storage(payload: dict[str, object]) -> dict[str, object]:
    """请求数据 → 存储列

    current: 逐列写入，数组字段序列化为 JSON 文本，assessment_data 置空
    legacy: 原样序列化嵌套数据到 assessment_data，同时尽量镜像平铺列
    """
    fields = normalize_payload(payload)
    columns: dict[str, object] = {}
    for name in SCALAR_FIELDS:
        columns[name] = fields.get(name)
    for name in ARRAY_FIELDS:
        columns[name] = _dump_json(fields.get(name))

    if detect_payload_format(payload) == AssessmentFormat.LEGACY:
        columns["assessment_data"] = json.dumps(extract_legacy_blob(payload), ensure_ascii=False)
    else:
        columns["assessment_data"] = None
    return columns


def _keep_items(items: list[object], name: str, record_id: object) -> list[object]:
    """按字段类型过滤数组元素：症状只保留字符串，recommendations 只保留对象"""
    wanted = dict if name == "recommendations" else str
    kept = [item for item in items if isinstance(item, wanted)]
    if len(kept) != len(items):
        logger.warning(
            "Dropped %s malformed %s entries for assessment %s", len(items) - len(kept), name, record_id
        )
    return kept


def _scalar(value: object, name: str, record_id: object) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    logger.warning("Dropped malformed %s for assessment %s", name, record_id)
    return None


def _parse_array(value: object, name: str, record_id: object) -> list[object]:
    """解析数组列，失败时记录日志并返回空列表"""
    if not _is_set(value):
        return []
    if isinstance(value, list):
        return _keep_items(list(value), name, record_id)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except (TypeError, ValueError):
            logger.warning("Failed to parse %s for assessment %s", name, record_id)
            return []
        if isinstance(parsed, list):
            return _keep_items(parsed, name, record_id)
        logger.warning("Non-array %s for assessment %s", name, record_id)
        return []
    return []


def _parse_other_symptoms(value: object, record_id: object) -> list[object]:
    """other_symptoms 兼容历史上直接存放的纯文本"""
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return []
        try:
            parsed = json.loads(trimmed)
        except (TypeError, ValueError):
            return [trimmed]
        if isinstance(parsed, list):
            return [s for s in parsed if isinstance(s, str) and s.strip()]
        return [trimmed]
    return _parse_array(value, "other_symptoms", record_id)


def _fields_from_current(record: dict[str, object]) -> dict[str, object]:
    record_id = record.get("id")
    out: dict[str, object] = {name: _scalar(record.get(name), name, record_id) for name in SCALAR_FIELDS}
    for name in ARRAY_FIELDS:
        if name == "other_symptoms":
            out[name] = _parse_other_symptoms(record.get(name), record_id)
        else:
            out[name] = _parse_array(record.get(name), name, record_id)
    return out


def _fields_from_legacy(legacy: LegacyRecord) -> dict[str, object]:
    record_id = legacy.record.get("id")
    nested = _flatten_fields(legacy.blob)
    # 嵌套数据缺失的字段回退到镜像列
    mirrored = _fields_from_current(legacy.record)
    out: dict[str, object] = {}
    for name in SCALAR_FIELDS:
        out[name] = _scalar(nested[name], name, record_id) if name in nested else mirrored[name]
    for name in ARRAY_FIELDS:
        if name in nested:
            value = nested[name]
            if isinstance(value, list):
                out[name] = _keep_items(list(value), name, record_id)
            else:
                out[name] = _parse_array(value, name, record_id)
        else:
            out[name] = mirrored[name]
    return out


def to_api(record: dict[str, object] | AssessmentRecord | None) -> dict[str, object] | None:
    """存储记录（任一编码）→ 规范 API 结构，未知格式返回 None"""
    if record is None:
        return None
    classified = record if isinstance(record, (LegacyRecord, CurrentRecord)) else classify_record(record)
    if classified is None:
        return None

    if isinstance(classified, LegacyRecord):
        fields = _fields_from_legacy(classified)
    else:
        fields = _fields_from_current(classified.record)

    row = classified.record
    api: dict[str, object] = {name: row.get(name) for name in META_FIELDS}
    api.update(fields)
    return api


def api_to_fields(api: dict[str, object]) -> dict[str, object]:
    """规范 API 结构 → 平铺字段（去掉元数据）"""
    return {name: api.get(name) for name in SCALAR_FIELDS + ARRAY_FIELDS}
