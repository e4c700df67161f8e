from fastapi import APIRouter, Depends
from pydantic import BaseModel

from editorial_flow.api.v1.deps import get_assignment_service, get_editorial_service
from editorial_flow.core.security import require_admin_key
from editorial_flow.services.assignment_service import AssignmentService
from editorial_flow.services.editorial_service import EditorialService

router = APIRouter(prefix="/internal", tags=["Internal"])


class PaymentConfirmedRequest(BaseModel):
    manuscript_id: str
    payment_reference: str | None = None


@router.post("/cron/expire-assignments")
async def expire_assignments(
    _admin: None = Depends(require_admin_key),
    service: AssignmentService = Depends(get_assignment_service),
):
    """
    过期清扫（外部定时器触发）。
    """
    result = service.expire()
    return {"success": True, **result}


@router.post("/payments/confirmed")
async def payment_confirmed(
    payload: PaymentConfirmedRequest,
    _admin: None = Depends(require_admin_key),
    service: EditorialService = Depends(get_editorial_service),
):
    """
    支付回调转发入口：签名校验由上游网关完成，这里只接收“已支付”事实。
    """
    ms = service.confirm_payment(payload.manuscript_id, payment_reference=payload.payment_reference)
    return {"success": True, "data": ms.model_dump(mode="json")}
