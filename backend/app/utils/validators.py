"""输入验证工具"""

VALID_AGES: tuple[str, ...] = ("under-13", "13-17", "18-24", "25-plus")
VALID_CYCLE_LENGTHS: tuple[str, ...] = (
    "less-than-21", "21-25", "26-30", "31-35", "36-40", "irregular", "not-sure", "other",
)
VALID_PERIOD_DURATIONS: tuple[str, ...] = ("1-3", "4-5", "6-7", "8-plus", "varies", "not-sure", "other")
VALID_FLOW_HEAVINESS: tuple[str, ...] = ("light", "moderate", "heavy", "very-heavy", "varies", "not-sure")
VALID_PAIN_LEVELS: tuple[str, ...] = ("no-pain", "mild", "moderate", "severe", "debilitating", "varies")

SYMPTOM_FIELDS: tuple[str, ...] = ("physical_symptoms", "emotional_symptoms", "other_symptoms")

MAX_MESSAGE_LENGTH = 4000


def validate_age(age: object) -> bool:
    """验证年龄段"""
    return age in VALID_AGES


def validate_cycle_length(cycle_length: object) -> bool:
    """验证周期长度"""
    return cycle_length in VALID_CYCLE_LENGTHS


def validate_period_duration(duration: object) -> bool:
    """验证经期时长"""
    return duration in VALID_PERIOD_DURATIONS


def validate_flow_heaviness(flow: object) -> bool:
    """验证经量"""
    return flow in VALID_FLOW_HEAVINESS


def validate_pain_level(pain: object) -> bool:
    """验证疼痛程度"""
    return pain in VALID_PAIN_LEVELS


def _is_string_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _is_recommendation_list(value: object) -> bool:
    if not isinstance(value, list):
        return False
    for item in value:
        if not isinstance(item, dict):
            return False
        if not isinstance(item.get("title"), str) or not isinstance(item.get("description"), str):
            return False
    return True


def validate_assessment_fields(fields: dict[str, object]) -> list[str]:
    """
    验证规范化后的评估字段（snake_case 平铺结构）

    Returns:
        错误信息列表，为空表示通过
    """
    errors: list[str] = []

    age = fields.get("age")
    if not age:
        errors.append("age is required")
    elif not validate_age(age):
        errors.append("Invalid age value")

    cycle_length = fields.get("cycle_length")
    if not cycle_length:
        errors.append("cycle_length is required")
    elif not validate_cycle_length(cycle_length):
        errors.append("Invalid cycle_length value")

    # 可选字段，存在时校验
    if fields.get("period_duration") and not validate_period_duration(fields["period_duration"]):
        errors.append("Invalid period_duration value")
    if fields.get("flow_heaviness") and not validate_flow_heaviness(fields["flow_heaviness"]):
        errors.append("Invalid flow_heaviness value")
    if fields.get("pain_level") and not validate_pain_level(fields["pain_level"]):
        errors.append("Invalid pain_level value")

    pattern = fields.get("pattern")
    if pattern is not None and not isinstance(pattern, str):
        errors.append("pattern must be a string")

    for name in SYMPTOM_FIELDS:
        value = fields.get(name)
        if value is not None and not _is_string_list(value):
            errors.append(f"{name} must be a list of strings")

    recommendations = fields.get("recommendations")
    if recommendations is not None and not _is_recommendation_list(recommendations):
        errors.append("recommendations must be a list of {title, description} objects")

    return errors


def validate_message_content(content: object) -> tuple[bool, str]:
    """
    验证聊天消息内容

    Returns:
        (is_valid, message)
    """
    if not isinstance(content, str) or not content.strip():
        return False, "Message content is required"
    if len(content) > MAX_MESSAGE_LENGTH:
        return False, f"Message content exceeds {MAX_MESSAGE_LENGTH} characters"
    return True, "ok"
