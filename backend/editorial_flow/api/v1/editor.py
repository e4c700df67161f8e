from typing import Literal

from fastapi import APIRouter, Depends, Query

from editorial_flow.api.v1.deps import get_queue_service
from editorial_flow.core.roles import get_current_identity
from editorial_flow.models.user import Identity
from editorial_flow.services.queue_service import EditorialQueueService, QueueFilters

router = APIRouter(prefix="/editor", tags=["Editor Queue"])


@router.get("/queue")
async def get_editor_queue(
    view: Literal["all", "new_submissions", "my_manuscripts", "in_review", "awaiting_decision", "revisions"] = "all",
    status: list[str] | None = Query(default=None),
    field_of_study: str | None = Query(default=None),
    priority: Literal["low", "normal", "high", "urgent"] | None = Query(default=None),
    urgent_only: bool = Query(default=False),
    sort_by: Literal["submitted_at", "priority", "urgency", "title"] = "submitted_at",
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    service: EditorialQueueService = Depends(get_queue_service),
):
    """
    编辑工作台队列：每次读取按当前时间重算紧急度。
    """
    filters = QueueFilters(
        view=view,
        statuses=tuple(status or ()),
        field_of_study=field_of_study,
        priority=priority,
        urgent_only=urgent_only,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    return {"success": True, "data": service.list_queue(identity, filters)}
