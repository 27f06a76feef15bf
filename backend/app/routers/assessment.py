"""评估路由"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from ..errors import NotFoundError, OwnershipError, ValidationError
from ..schemas.assessment import AssessmentDeleteResponse, AssessmentResponse, AssessmentSendRequest
from ..services.assessment_repository import AssessmentRepository
from ..utils.deps import get_assessment_repository, get_current_user_id

router = APIRouter(prefix="/assessment", tags=["评估"])

logger = logging.getLogger(__name__)


def _validation_detail(e: ValidationError) -> dict[str, object]:
    return {"message": e.message, "errors": list(e.errors)}


@router.post("/send", response_model=AssessmentResponse, status_code=status.HTTP_201_CREATED)
async def send_assessment(
    payload: AssessmentSendRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    repo: Annotated[AssessmentRepository, Depends(get_assessment_repository)],
):
    try:
        return await repo.create(payload.assessment_data or {}, user_id)
    except ValidationError as e:
        logger.info("Assessment rejected for user %s: %s", user_id, e.errors)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_detail(e))


@router.get("/list", response_model=list[AssessmentResponse])
async def list_assessments(
    user_id: Annotated[str, Depends(get_current_user_id)],
    repo: Annotated[AssessmentRepository, Depends(get_assessment_repository)],
):
    items = await repo.list_by_user(user_id)
    if not items:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No assessments found")
    return items


async def _get_owned_assessment(
    repo: AssessmentRepository, assessment_id: str, user_id: str
) -> dict[str, object] | None:
    assessment = await repo.find_by_id(assessment_id)
    if assessment is None or str(assessment.get("user_id")) != str(user_id):
        return None
    return assessment


@router.get("/{assessment_id}", response_model=AssessmentResponse)
async def get_assessment(
    assessment_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    repo: Annotated[AssessmentRepository, Depends(get_assessment_repository)],
):
    assessment = await _get_owned_assessment(repo, assessment_id, user_id)
    if assessment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment not found")
    return assessment


@router.put("/{assessment_id}", response_model=AssessmentResponse)
async def update_assessment(
    assessment_id: str,
    payload: AssessmentSendRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    repo: Annotated[AssessmentRepository, Depends(get_assessment_repository)],
):
    try:
        return await repo.update(assessment_id, payload.assessment_data or {}, user_id)
    except OwnershipError:
        logger.warning("User %s attempted to update assessment %s", user_id, assessment_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to update this assessment",
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment not found")
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_detail(e))


@router.delete("/{assessment_id}", response_model=AssessmentDeleteResponse)
async def delete_assessment(
    assessment_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    repo: Annotated[AssessmentRepository, Depends(get_assessment_repository)],
):
    if not await repo.validate_ownership(assessment_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment not found")
    if not await repo.delete(assessment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment not found")
    return AssessmentDeleteResponse(message="Assessment deleted successfully", id=assessment_id)
