from app.utils.validators import (
    MAX_MESSAGE_LENGTH,
    validate_age,
    validate_assessment_fields,
    validate_cycle_length,
    validate_flow_heaviness,
    validate_message_content,
    validate_pain_level,
    validate_period_duration,
)


def _fields(**overrides):
    base = {"age": "18-24", "cycle_length": "26-30"}
    base.update(overrides)
    return base


def test_field_predicates() -> None:
    assert validate_age("25-plus") is True
    assert validate_age("30") is False
    assert validate_cycle_length("irregular") is True
    assert validate_cycle_length("45") is False
    assert validate_period_duration("8-plus") is True
    assert validate_period_duration("9") is False
    assert validate_flow_heaviness("very-heavy") is True
    assert validate_flow_heaviness("extreme") is False
    assert validate_pain_level("debilitating") is True
    assert validate_pain_level(7) is False


def test_minimal_valid_fields() -> None:
    assert validate_assessment_fields(_fields()) == []


def test_required_fields_missing() -> None:
    errors = validate_assessment_fields({})
    assert "age is required" in errors
    assert "cycle_length is required" in errors


def test_invalid_enum_values() -> None:
    errors = validate_assessment_fields(
        _fields(age="old", cycle_length="60", period_duration="x", flow_heaviness="y", pain_level="z")
    )
    assert errors == [
        "Invalid age value",
        "Invalid cycle_length value",
        "Invalid period_duration value",
        "Invalid flow_heaviness value",
        "Invalid pain_level value",
    ]


def test_symptom_and_recommendation_shapes() -> None:
    errors = validate_assessment_fields(
        _fields(
            pattern=3,
            physical_symptoms="Bloating",
            emotional_symptoms=["ok", 1],
            recommendations=[{"title": "t"}],
        )
    )
    assert "pattern must be a string" in errors
    assert "physical_symptoms must be a list of strings" in errors
    assert "emotional_symptoms must be a list of strings" in errors
    assert any(e.startswith("recommendations must be") for e in errors)

    ok = validate_assessment_fields(
        _fields(physical_symptoms=[], recommendations=[{"title": "t", "description": "d"}])
    )
    assert ok == []


def test_validate_message_content() -> None:
    assert validate_message_content("hi") == (True, "ok")
    assert validate_message_content("   ")[0] is False
    assert validate_message_content(None)[0] is False
    is_valid, msg = validate_message_content("x" * (MAX_MESSAGE_LENGTH + 1))
    assert is_valid is False
    assert str(MAX_MESSAGE_LENGTH) in msg
