from __future__ import annotations

import logging
from typing import Any, Iterable

from editorial_flow.core.errors import DependencyFailure
from editorial_flow.core.timeutils import utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.intents import Intent, NotifyUser, QueueAction, ScheduleAnalysis, intent_label
from editorial_flow.services.activity_log_service import ActivityLogService
from editorial_flow.services.notification_service import NotificationService

logger = logging.getLogger("editorialflow.dispatch")


class IntentDispatcher:
    """
    副作用执行器：消费引擎产出的 intents。

    中文注释:
    - 主状态变更已经提交后才会调用这里；每个 intent 独立执行、独立失败。
    - 任何异常都在这里捕获并记日志，返回 False，绝不向上抛出。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        notification_service: NotificationService | None = None,
        activity_log: ActivityLogService | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.notifications = notification_service or NotificationService(client=self.client)
        self.activity_log = activity_log or ActivityLogService(client=self.client)

    def _run(self, intent: Intent) -> None:
        if isinstance(intent, NotifyUser):
            self.notifications.create_notification(
                user_id=intent.user_id,
                manuscript_id=intent.manuscript_id,
                type=intent.type,
                title=intent.title,
                message=intent.message,
                data=dict(intent.data),
                priority=intent.priority,
            )
            return
        if isinstance(intent, ScheduleAnalysis):
            try:
                self.client.table("quality_analysis_jobs").insert(
                    {
                        "review_id": intent.review_id,
                        "analysis_type": intent.analysis_type,
                        "priority": intent.priority,
                        "status": "pending",
                        "created_at": utc_now_iso(),
                    }
                ).execute()
            except Exception as e:
                raise DependencyFailure(f"analysis job insert failed: {e}") from e
            return
        if isinstance(intent, QueueAction):
            self.activity_log.append(
                manuscript_id=intent.manuscript_id,
                user_id=intent.actor_id,
                action=f"queued_{intent.action}",
                details=dict(intent.details),
            )
            return
        raise DependencyFailure(f"unsupported intent: {type(intent).__name__}")

    def dispatch(self, intent: Intent) -> bool:
        try:
            self._run(intent)
            return True
        except Exception as e:
            logger.warning("[Dispatch] %s failed (ignored): %s", intent_label(intent), e)
            return False

    def dispatch_all(self, intents: Iterable[Intent]) -> list[tuple[str, bool]]:
        return [(intent_label(intent), self.dispatch(intent)) for intent in intents]
