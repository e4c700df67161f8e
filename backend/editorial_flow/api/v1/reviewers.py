from fastapi import APIRouter, Depends

from editorial_flow.api.v1.deps import get_workload_service
from editorial_flow.core.roles import get_current_identity
from editorial_flow.models.assignment import CandidateRankRequest, ReviewerSettingsUpdate
from editorial_flow.models.user import Identity
from editorial_flow.services.workload_service import WorkloadService

router = APIRouter(prefix="/reviewers", tags=["Reviewers"])


@router.get("/{reviewer_id}/availability")
async def get_availability(
    reviewer_id: str,
    identity: Identity = Depends(get_current_identity),
    service: WorkloadService = Depends(get_workload_service),
):
    return {"success": True, "data": service.workload_summary(identity, reviewer_id)}


@router.patch("/{reviewer_id}/settings")
async def update_settings(
    reviewer_id: str,
    payload: ReviewerSettingsUpdate,
    identity: Identity = Depends(get_current_identity),
    service: WorkloadService = Depends(get_workload_service),
):
    profile = service.update_settings(identity, reviewer_id, payload)
    return {"success": True, "data": profile.model_dump(mode="json")}


@router.post("/candidates")
async def rank_candidates(
    payload: CandidateRankRequest,
    identity: Identity = Depends(get_current_identity),
    service: WorkloadService = Depends(get_workload_service),
):
    """
    候选审稿人排序（可用优先，剩余容量多者优先）。
    """
    ranked = service.rank_candidates(identity, payload.manuscript_id, payload.reviewer_ids)
    return {"success": True, "data": ranked}
