from __future__ import annotations

import logging
from typing import Any

from editorial_flow.core.errors import DependencyFailure
from editorial_flow.core.timeutils import utc_now_iso
from editorial_flow.lib.api_client import supabase_admin

logger = logging.getLogger("editorialflow.audit")


class ActivityLogService:
    """
    activity_logs 追加写（审计轨迹，只增不改）。

    中文注释:
    - record(): 主流程里的审计写入，失败只记日志，不阻断已提交的状态变更。
    - append(): 严格写入，失败抛 DependencyFailure，供 dispatcher 判定“排队动作是否成功”。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client or supabase_admin

    def append(
        self,
        *,
        manuscript_id: str | None,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload = {
            "manuscript_id": manuscript_id,
            "user_id": user_id,
            "action": action,
            "details": details or {},
            "created_at": utc_now_iso(),
        }
        try:
            resp = self.client.table("activity_logs").insert(payload).execute()
        except Exception as e:
            raise DependencyFailure(f"activity log insert failed: {e}") from e
        rows = getattr(resp, "data", None) or []
        return rows[0] if rows else payload

    def record(
        self,
        *,
        manuscript_id: str | None,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        try:
            return self.append(manuscript_id=manuscript_id, user_id=user_id, action=action, details=details)
        except DependencyFailure as e:
            logger.warning("[Audit] %s for manuscript=%s failed (ignored): %s", action, manuscript_id, e)
            return None

    def list_for_manuscript(self, manuscript_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
        resp = (
            self.client.table("activity_logs")
            .select("*")
            .eq("manuscript_id", manuscript_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return getattr(resp, "data", None) or []
