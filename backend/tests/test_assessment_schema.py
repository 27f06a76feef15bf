import json
import logging

import pytest

from app.errors import MalformedStorageError, ValidationError
from app.services.assessment_schema import (
    AssessmentFormat,
    CurrentRecord,
    LegacyRecord,
    classify_record,
    detect_payload_format,
    detect_stored_format,
    extract_legacy_blob,
    normalize_payload,
    parse_record,
    to_api,
    to_storage,
)
from conftest import VALID_ASSESSMENT


LEGACY_BLOB = {
    "age": "18-24",
    "pattern": "regular",
    "cycleLength": "26-30",
    "periodDuration": "4-5",
    "flowHeaviness": "moderate",
    "painLevel": "mild",
    "symptoms": {"physical": ["Bloating"], "emotional": ["Anxiety"], "other": "Dizziness"},
    "recommendations": [{"title": "Rest", "description": "Sleep well."}],
}


def _stored(payload, record_id="a1", user_id="u1"):
    row = {"id": record_id, "user_id": user_id, "created_at": None, "updated_at": None}
    row.update(to_storage(payload))
    return row


def test_detect_payload_format() -> None:
    assert detect_payload_format(VALID_ASSESSMENT) == AssessmentFormat.CURRENT
    assert detect_payload_format({"assessment_data": LEGACY_BLOB}) == AssessmentFormat.LEGACY
    assert detect_payload_format({"assessmentData": json.dumps(LEGACY_BLOB)}) == AssessmentFormat.LEGACY
    assert detect_payload_format({"assessment_data": "not json"}) == AssessmentFormat.CURRENT
    assert detect_payload_format(None) == AssessmentFormat.CURRENT
    assert detect_payload_format([1, 2]) == AssessmentFormat.CURRENT


def test_detect_stored_format_is_total() -> None:
    assert detect_stored_format({"assessment_data": "{}", "age": "18-24"}) == AssessmentFormat.LEGACY
    assert detect_stored_format({"age": "18-24"}) == AssessmentFormat.CURRENT
    assert detect_stored_format({"pattern": "regular"}) == AssessmentFormat.CURRENT
    assert detect_stored_format({"id": "x", "assessment_data": None}) == AssessmentFormat.UNKNOWN
    assert detect_stored_format({}) == AssessmentFormat.UNKNOWN
    assert detect_stored_format("garbage") == AssessmentFormat.UNKNOWN
    assert detect_stored_format(None) == AssessmentFormat.UNKNOWN


def test_classify_record_variants() -> None:
    legacy = classify_record(_stored({"assessment_data": LEGACY_BLOB}))
    assert isinstance(legacy, LegacyRecord)
    assert legacy.blob["cycleLength"] == "26-30"

    current = classify_record(_stored(VALID_ASSESSMENT))
    assert isinstance(current, CurrentRecord)

    assert classify_record({"id": "x"}) is None


def test_parse_record_raises_on_unknown_format() -> None:
    with pytest.raises(MalformedStorageError):
        _ = parse_record({"id": "x"})
    assert isinstance(parse_record(_stored(VALID_ASSESSMENT)), CurrentRecord)


def test_current_round_trip_reproduces_fields() -> None:
    api = to_api(_stored(VALID_ASSESSMENT))
    assert api is not None
    for key, value in VALID_ASSESSMENT.items():
        assert api[key] == value
    assert api["id"] == "a1"
    assert api["user_id"] == "u1"


def test_current_storage_is_detected_as_current() -> None:
    row = _stored(VALID_ASSESSMENT)
    assert row["assessment_data"] is None
    assert detect_stored_format(row) == AssessmentFormat.CURRENT
    assert json.loads(str(row["physical_symptoms"])) == ["Bloating", "Headaches"]


def test_current_payload_accepts_camel_case_and_nested_symptoms() -> None:
    fields = normalize_payload({
        "age": "13-17",
        "cycleLength": "21-25",
        "painLevel": "severe",
        "symptoms": {"physical": ["Cramps"], "emotional": [], "other": "Acne"},
    })
    assert fields["cycle_length"] == "21-25"
    assert fields["pain_level"] == "severe"
    assert fields["physical_symptoms"] == ["Cramps"]
    assert fields["other_symptoms"] == ["Acne"]


def test_legacy_to_api_flattens_blob_and_hides_it() -> None:
    api = to_api(_stored({"assessment_data": LEGACY_BLOB}))
    assert api is not None
    assert "assessment_data" not in api
    assert api["cycle_length"] == "26-30"
    assert api["period_duration"] == "4-5"
    assert api["physical_symptoms"] == ["Bloating"]
    assert api["emotional_symptoms"] == ["Anxiety"]
    assert api["other_symptoms"] == ["Dizziness"]
    assert api["recommendations"] == [{"title": "Rest", "description": "Sleep well."}]


def test_legacy_blob_falls_back_to_mirrored_columns() -> None:
    row = {"id": "a2", "user_id": "u1", "assessment_data": json.dumps({"pattern": "irregular"}),
           "age": "25-plus", "cycle_length": "irregular", "physical_symptoms": '["Acne"]'}
    api = to_api(row)
    assert api is not None
    assert api["pattern"] == "irregular"
    assert api["age"] == "25-plus"
    assert api["physical_symptoms"] == ["Acne"]
    assert api["emotional_symptoms"] == []


def test_malformed_json_columns_degrade_and_log(caplog) -> None:
    row = {"id": "a3", "user_id": "u1", "age": "18-24", "cycle_length": "26-30",
           "physical_symptoms": '{"BAD_JSON', "recommendations": "[not json"}
    with caplog.at_level(logging.WARNING):
        api = to_api(row)
    assert api is not None
    assert api["physical_symptoms"] == []
    assert api["recommendations"] == []
    assert api["age"] == "18-24"
    assert any("physical_symptoms" in r.getMessage() for r in caplog.records)


def test_mistyped_array_entries_are_dropped(caplog) -> None:
    row = {"id": "a6", "user_id": "u1", "age": 25, "cycle_length": "26-30",
           "physical_symptoms": "[1, \"Bloating\"]", "recommendations": "[\"text\", {\"title\": \"Rest\"}]"}
    with caplog.at_level(logging.WARNING):
        api = to_api(row)
    assert api is not None
    assert api["age"] == "25"
    assert api["physical_symptoms"] == ["Bloating"]
    assert api["recommendations"] == [{"title": "Rest"}]
    assert any("recommendations" in r.getMessage() for r in caplog.records)

    legacy = to_api({"id": "a7", "user_id": "u1",
                     "assessment_data": {"age": "18-24", "symptoms": {"physical": ["Acne", 3]}}})
    assert legacy is not None
    assert legacy["physical_symptoms"] == ["Acne"]


def test_malformed_legacy_blob_degrades(caplog) -> None:
    row = {"id": "a4", "user_id": "u1", "assessment_data": '{"BAD_JSON', "age": "18-24"}
    with caplog.at_level(logging.WARNING):
        api = to_api(row)
    assert api is not None
    assert api["age"] == "18-24"
    assert api["physical_symptoms"] == []
    assert any("assessment_data" in r.getMessage() for r in caplog.records)


def test_other_symptoms_plain_text_is_single_item() -> None:
    row = {"id": "a5", "user_id": "u1", "age": "18-24", "other_symptoms": "Back pain"}
    api = to_api(row)
    assert api is not None
    assert api["other_symptoms"] == ["Back pain"]


def test_unknown_record_maps_to_none() -> None:
    assert to_api({"id": "x", "user_id": "u"}) is None
    assert to_api(None) is None


def test_bounded_unwrap() -> None:
    assert extract_legacy_blob({"assessment_data": LEGACY_BLOB}) == LEGACY_BLOB
    assert extract_legacy_blob({"assessmentData": {"assessment_data": LEGACY_BLOB}}) == LEGACY_BLOB

    too_deep = {"assessmentData": {"assessmentData": {"assessment_data": LEGACY_BLOB}}}
    with pytest.raises(ValidationError) as e:
        _ = normalize_payload(too_deep)
    assert "nested too deeply" in e.value.errors[0]
