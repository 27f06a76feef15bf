import json
from datetime import datetime, timedelta, timezone

import pytest

from app.errors import NotFoundError, OwnershipError, PersistenceError, ValidationError
from app.services.assessment_repository import TABLE, AssessmentRepository, validate_assessment_payload
from app.services.assessment_schema import AssessmentFormat, detect_stored_format
from app.services.record_store import MemoryRecordStore
from conftest import VALID_ASSESSMENT


LEGACY_PAYLOAD = {
    "assessment_data": {
        "age": "13-17",
        "pattern": "irregular",
        "cycleLength": "irregular",
        "symptoms": {"physical": ["Cramps"], "emotional": []},
    }
}


def test_validate_assessment_payload() -> None:
    assert validate_assessment_payload(VALID_ASSESSMENT) == []
    assert validate_assessment_payload(LEGACY_PAYLOAD) == []
    assert validate_assessment_payload({}) == ["Assessment data is required"]
    assert validate_assessment_payload(None) == ["Assessment data is required"]
    assert "Invalid age value" in validate_assessment_payload({"age": "x", "cycle_length": "26-30"})
    too_deep = {"assessmentData": {"assessmentData": {"assessment_data": {"age": "18-24"}}}}
    assert validate_assessment_payload(too_deep) == ["assessment data is nested too deeply"]


@pytest.mark.asyncio
async def test_create_current_and_read_back(assessments: AssessmentRepository, store: MemoryRecordStore) -> None:
    created = await assessments.create(VALID_ASSESSMENT, "u1")
    assert created["user_id"] == "u1"
    assert created["physical_symptoms"] == ["Bloating", "Headaches"]
    assert isinstance(created["created_at"], datetime)

    raw = store.tables[TABLE][str(created["id"])]
    assert detect_stored_format(raw) == AssessmentFormat.CURRENT

    found = await assessments.find_by_id(str(created["id"]))
    assert found == created


@pytest.mark.asyncio
async def test_create_legacy_keeps_blob(assessments: AssessmentRepository, store: MemoryRecordStore) -> None:
    created = await assessments.create(LEGACY_PAYLOAD, "u1")
    raw = store.tables[TABLE][str(created["id"])]
    assert detect_stored_format(raw) == AssessmentFormat.LEGACY
    assert json.loads(str(raw["assessment_data"]))["cycleLength"] == "irregular"
    assert created["cycle_length"] == "irregular"
    assert created["physical_symptoms"] == ["Cramps"]
    assert "assessment_data" not in created


@pytest.mark.asyncio
async def test_create_rejects_invalid(assessments: AssessmentRepository, store: MemoryRecordStore) -> None:
    with pytest.raises(ValidationError) as e:
        await assessments.create({"age": "18-24"}, "u1")
    assert e.value.errors == ["cycle_length is required"]
    assert store.tables.get(TABLE, {}) == {}


@pytest.mark.asyncio
async def test_list_by_user_newest_first_and_skips_malformed(
    assessments: AssessmentRepository, store: MemoryRecordStore
) -> None:
    first = await assessments.create(VALID_ASSESSMENT, "u1")
    second = await assessments.create(LEGACY_PAYLOAD, "u1")
    store.tables[TABLE][str(first["id"])]["created_at"] = datetime.now(timezone.utc) - timedelta(days=1)
    _ = await assessments.create(VALID_ASSESSMENT, "u2")
    _ = await store.create(TABLE, {"id": "broken", "user_id": "u1", "created_at": datetime.now(timezone.utc)})

    items = await assessments.list_by_user("u1")
    assert [i["id"] for i in items] == [second["id"], first["id"]]
    assert await assessments.find_by_id("broken") is None


@pytest.mark.asyncio
async def test_update_merges_and_keeps_identity(assessments: AssessmentRepository) -> None:
    created = await assessments.create(VALID_ASSESSMENT, "u1")
    updated = await assessments.update(str(created["id"]), {"pain_level": "severe", "user_id": "u2"}, "u1")

    assert updated["pain_level"] == "severe"
    assert updated["age"] == VALID_ASSESSMENT["age"]
    assert updated["physical_symptoms"] == VALID_ASSESSMENT["physical_symptoms"]
    assert updated["id"] == created["id"]
    assert updated["user_id"] == "u1"
    assert updated["created_at"] == created["created_at"]


@pytest.mark.asyncio
async def test_update_legacy_payload_stays_legacy(assessments: AssessmentRepository, store: MemoryRecordStore) -> None:
    created = await assessments.create(VALID_ASSESSMENT, "u1")
    updated = await assessments.update(
        str(created["id"]), {"assessment_data": {"painLevel": "moderate"}}, "u1"
    )
    raw = store.tables[TABLE][str(created["id"])]
    assert detect_stored_format(raw) == AssessmentFormat.LEGACY
    assert updated["pain_level"] == "moderate"
    assert updated["cycle_length"] == VALID_ASSESSMENT["cycle_length"]


@pytest.mark.asyncio
async def test_update_current_payload_rewrites_legacy_record_as_current(
    assessments: AssessmentRepository, store: MemoryRecordStore
) -> None:
    created = await assessments.create(LEGACY_PAYLOAD, "u1")
    updated = await assessments.update(str(created["id"]), {"pain_level": "severe"}, "u1")

    raw = store.tables[TABLE][str(created["id"])]
    assert detect_stored_format(raw) == AssessmentFormat.CURRENT
    assert raw["assessment_data"] is None
    assert updated["pain_level"] == "severe"
    assert updated["pattern"] == "irregular"
    assert updated["physical_symptoms"] == ["Cramps"]


@pytest.mark.asyncio
async def test_update_errors(assessments: AssessmentRepository) -> None:
    created = await assessments.create(VALID_ASSESSMENT, "u1")
    with pytest.raises(NotFoundError):
        await assessments.update("missing", {"pain_level": "mild"}, "u1")
    with pytest.raises(OwnershipError):
        await assessments.update(str(created["id"]), {"pain_level": "mild"}, "u2")
    with pytest.raises(ValidationError):
        await assessments.update(str(created["id"]), {"age": "nope"}, "u1")


@pytest.mark.asyncio
async def test_delete_and_ownership(assessments: AssessmentRepository) -> None:
    created = await assessments.create(VALID_ASSESSMENT, "u1")
    assessment_id = str(created["id"])

    assert await assessments.validate_ownership(assessment_id, "u1") is True
    assert await assessments.validate_ownership(assessment_id, "u2") is False
    assert await assessments.delete(assessment_id) is True
    assert await assessments.delete(assessment_id) is False
    assert await assessments.find_by_id(assessment_id) is None


class _BrokenStore(MemoryRecordStore):
    async def create(self, table, record):
        raise PersistenceError("store unavailable")


@pytest.mark.asyncio
async def test_store_failure_propagates() -> None:
    repo = AssessmentRepository(_BrokenStore())
    with pytest.raises(PersistenceError):
        await repo.create(VALID_ASSESSMENT, "u1")
