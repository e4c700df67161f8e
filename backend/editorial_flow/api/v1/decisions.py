from fastapi import APIRouter, Depends, Query

from editorial_flow.api.v1.deps import get_decision_service
from editorial_flow.core.roles import get_current_identity
from editorial_flow.models.decision import ProcessDecisionRequest
from editorial_flow.models.user import Identity
from editorial_flow.services.decision_service import DecisionService

router = APIRouter(tags=["Editorial Decisions"])


@router.post("/decisions")
async def process_decision(
    payload: ProcessDecisionRequest,
    identity: Identity = Depends(get_current_identity),
    service: DecisionService = Depends(get_decision_service),
):
    """
    保存决策草稿或提交最终决策。

    中文注释:
    - success=True 只代表决策已记录且状态已流转；
    - 后置动作的执行结果见 queued_actions / failed_actions，失败不回滚决策。
    """
    result = service.process_decision(
        identity,
        payload.manuscript_id,
        payload.decision,
        payload.components,
        payload.actions,
        is_draft=payload.is_draft,
        template_id=payload.template_id,
    )
    return {"success": True, "data": result.model_dump(mode="json")}


@router.post("/decisions/{draft_id}/submit")
async def submit_draft_decision(
    draft_id: str,
    identity: Identity = Depends(get_current_identity),
    service: DecisionService = Depends(get_decision_service),
):
    result = service.submit_final_decision(identity, draft_id)
    return {"success": True, "data": result.model_dump(mode="json")}


@router.get("/manuscripts/{manuscript_id}/decisions")
async def decision_history(
    manuscript_id: str,
    identity: Identity = Depends(get_current_identity),
    service: DecisionService = Depends(get_decision_service),
):
    return {"success": True, "data": service.get_decision_history(identity, manuscript_id)}


@router.get("/manuscripts/{manuscript_id}/decision-drafts")
async def draft_decisions(
    manuscript_id: str,
    editor_id: str | None = Query(default=None),
    identity: Identity = Depends(get_current_identity),
    service: DecisionService = Depends(get_decision_service),
):
    drafts = service.get_draft_decisions(identity, manuscript_id, editor_id)
    return {"success": True, "data": [d.model_dump(mode="json") for d in drafts]}
