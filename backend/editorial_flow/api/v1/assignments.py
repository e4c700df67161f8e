from fastapi import APIRouter, Depends

from editorial_flow.api.v1.deps import get_assignment_service
from editorial_flow.core.roles import get_current_identity
from editorial_flow.models.assignment import InviteReviewerRequest, RemindRequest, RespondRequest
from editorial_flow.models.user import Identity
from editorial_flow.services.assignment_service import AssignmentService

router = APIRouter(tags=["Review Assignments"])


@router.post("/assignments", status_code=201)
async def invite_reviewer(
    payload: InviteReviewerRequest,
    identity: Identity = Depends(get_current_identity),
    service: AssignmentService = Depends(get_assignment_service),
):
    """
    编辑邀请审稿人。

    - 审稿人不可用（状态/容量）返回 409 capacity_exceeded；
    - 同一 (稿件, 审稿人) 已有进行中任务返回 409 duplicate_assignment。
    """
    assignment = service.invite_reviewer(identity, payload.manuscript_id, payload.reviewer_id, payload.due_date)
    return {"success": True, "data": assignment.model_dump(mode="json")}


@router.post("/assignments/remind")
async def remind_reviewers(
    payload: RemindRequest,
    identity: Identity = Depends(get_current_identity),
    service: AssignmentService = Depends(get_assignment_service),
):
    if payload.assignment_ids:
        result = service.remind(identity, payload.assignment_ids, payload.subject, payload.message)
    else:
        result = service.remind_for_manuscripts(identity, payload.manuscript_ids, payload.subject, payload.message)
    return {"success": True, "data": result.model_dump(mode="json")}


@router.get("/assignments/mine")
async def my_assignments(
    identity: Identity = Depends(get_current_identity),
    service: AssignmentService = Depends(get_assignment_service),
):
    rows = service.list_for_reviewer(identity)
    return {"success": True, "data": [a.model_dump(mode="json") for a in rows]}


@router.post("/assignments/{assignment_id}/respond")
async def respond_to_invitation(
    assignment_id: str,
    payload: RespondRequest,
    identity: Identity = Depends(get_current_identity),
    service: AssignmentService = Depends(get_assignment_service),
):
    assignment = service.respond(identity, assignment_id, payload.response, payload.reason)
    return {"success": True, "data": assignment.model_dump(mode="json")}


@router.get("/manuscripts/{manuscript_id}/assignments")
async def list_manuscript_assignments(
    manuscript_id: str,
    identity: Identity = Depends(get_current_identity),
    service: AssignmentService = Depends(get_assignment_service),
):
    rows = service.list_for_manuscript(identity, manuscript_id)
    return {"success": True, "data": [a.model_dump(mode="json") for a in rows]}
