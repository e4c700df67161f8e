from fastapi import APIRouter, Depends

from editorial_flow.api.v1.deps import get_editorial_service
from editorial_flow.core.roles import get_current_identity
from editorial_flow.models.manuscript import AssignEditorRequest, ManuscriptCreate, PublishRequest
from editorial_flow.models.user import Identity
from editorial_flow.services.editorial_service import EditorialService

router = APIRouter(prefix="/manuscripts", tags=["Manuscripts"])


@router.post("", status_code=201)
async def create_manuscript(
    payload: ManuscriptCreate,
    identity: Identity = Depends(get_current_identity),
    service: EditorialService = Depends(get_editorial_service),
):
    """
    作者创建稿件草稿（status=draft）；支付确认后才进入 submitted。
    """
    ms = service.create_draft(identity, payload)
    return {"success": True, "data": ms.model_dump(mode="json")}


@router.get("/{manuscript_id}")
async def get_manuscript(
    manuscript_id: str,
    identity: Identity = Depends(get_current_identity),
    service: EditorialService = Depends(get_editorial_service),
):
    ms = service.get_visible_manuscript(identity, manuscript_id)
    return {"success": True, "data": ms.model_dump(mode="json")}


@router.post("/{manuscript_id}/assign-editor")
async def assign_editor(
    manuscript_id: str,
    payload: AssignEditorRequest | None = None,
    identity: Identity = Depends(get_current_identity),
    service: EditorialService = Depends(get_editorial_service),
):
    ms = service.assign_editor(identity, manuscript_id, payload.editor_id if payload else None)
    return {"success": True, "data": ms.model_dump(mode="json")}


@router.post("/{manuscript_id}/resubmit")
async def resubmit_revision(
    manuscript_id: str,
    identity: Identity = Depends(get_current_identity),
    service: EditorialService = Depends(get_editorial_service),
):
    ms = service.resubmit_revision(identity, manuscript_id)
    return {"success": True, "data": ms.model_dump(mode="json")}


@router.post("/{manuscript_id}/publish")
async def publish_manuscript(
    manuscript_id: str,
    payload: PublishRequest | None = None,
    identity: Identity = Depends(get_current_identity),
    service: EditorialService = Depends(get_editorial_service),
):
    ms = service.mark_published(identity, manuscript_id, doi=payload.doi if payload else None)
    return {"success": True, "data": ms.model_dump(mode="json")}
