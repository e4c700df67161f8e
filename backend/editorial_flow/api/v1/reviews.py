from fastapi import APIRouter, Depends

from editorial_flow.api.v1.deps import get_quality_service, get_review_service
from editorial_flow.core.roles import get_current_identity
from editorial_flow.models.review import (
    AssistanceRequest,
    FlagReviewRequest,
    ReviewDraftRequest,
    ReviewSubmitRequest,
    WithdrawReviewRequest,
)
from editorial_flow.models.user import Identity
from editorial_flow.services.quality_service import QualityService
from editorial_flow.services.review_service import ReviewService

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("/draft")
async def save_review_draft(
    payload: ReviewDraftRequest,
    identity: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
):
    review = service.save_draft(
        identity,
        payload.assignment_id,
        payload.form_data,
        recommendation=payload.recommendation,
        confidence_level=payload.confidence_level,
    )
    return {"success": True, "data": review.model_dump(mode="json")}


@router.post("/assistance")
async def review_assistance(
    payload: AssistanceRequest,
    identity: Identity = Depends(get_current_identity),
    quality: QualityService = Depends(get_quality_service),
):
    """
    实时写作辅助：对单个 section 给出建议/告警与完整度评分（不落库）。
    """
    result = quality.assist(identity, payload.text, payload.section)
    return {"success": True, "data": result.model_dump(mode="json")}


@router.post("/{review_id}/submit")
async def submit_review(
    review_id: str,
    payload: ReviewSubmitRequest | None = None,
    identity: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
):
    payload = payload or ReviewSubmitRequest()
    review = service.submit(
        identity,
        review_id,
        form_data=payload.form_data,
        recommendation=payload.recommendation,
        confidence_level=payload.confidence_level,
    )
    return {"success": True, "data": review.model_dump(mode="json")}


@router.post("/{review_id}/withdraw")
async def withdraw_review(
    review_id: str,
    payload: WithdrawReviewRequest,
    identity: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
):
    review = service.withdraw(identity, review_id, payload.reason)
    return {"success": True, "data": review.model_dump(mode="json")}


@router.post("/{review_id}/flags")
async def flag_review(
    review_id: str,
    payload: FlagReviewRequest,
    identity: Identity = Depends(get_current_identity),
    quality: QualityService = Depends(get_quality_service),
):
    report = quality.flag_review(
        identity,
        review_id,
        payload.flags,
        reason=payload.reason,
        urgent=payload.urgent,
        details=payload.details,
    )
    return {"success": True, "data": report.model_dump(mode="json")}


@router.get("/{review_id}/quality-report")
async def get_quality_report(
    review_id: str,
    identity: Identity = Depends(get_current_identity),
    quality: QualityService = Depends(get_quality_service),
):
    report = quality.get_report(identity, review_id)
    return {"success": True, "data": report.model_dump(mode="json")}
