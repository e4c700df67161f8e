from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from postgrest.exceptions import APIError

from editorial_flow.core.errors import DependencyFailure, is_foreign_key_violation
from editorial_flow.lib.api_client import supabase_admin

logger = logging.getLogger("editorialflow.notifications")


class NotificationService:
    """
    通知服务：封装 notifications 表的写入

    中文注释:
    1) 写入使用 supabase_admin（service_role），避免 RLS 导致写入失败。
    2) 失败抛 DependencyFailure，由 IntentDispatcher 统一吞掉并记录；调用方不直接依赖投递结果。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client or supabase_admin

    def create_notification(
        self,
        *,
        user_id: str,
        manuscript_id: Optional[str],
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        priority: str = "normal",
    ) -> Optional[Dict[str, Any]]:
        payload = {
            "user_id": user_id,
            "manuscript_id": manuscript_id,
            "type": type,
            "title": title,
            "message": message,
            "data": data or {},
            "priority": priority,
            "is_read": False,
        }
        try:
            res = self.client.table("notifications").insert(payload).execute()
        except APIError as e:
            # 中文注释:
            # - 演示/迁移数据里可能存在不对应 auth.users 的 profile，写通知会触发 23503。
            # - 该情况对主流程无影响，返回 None 视为“无需投递”。
            if is_foreign_key_violation(e):
                logger.info("[Notifications] orphan recipient %s skipped", user_id)
                return None
            raise DependencyFailure(f"notification insert failed: {e}") from e
        except Exception as e:
            raise DependencyFailure(f"notification insert failed: {e}") from e
        rows = getattr(res, "data", None) or []
        return rows[0] if rows else payload
