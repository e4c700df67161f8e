from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

NotificationPriority = Literal["low", "normal", "high"]


@dataclass(frozen=True)
class NotifyUser:
    """给某个用户发站内通知（邮件由通知中心异步投递，不在本引擎内）。"""

    user_id: str
    type: str
    title: str
    message: str
    manuscript_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = "normal"
    # 调用方用于回填结果的标签，例如 decision 后置动作名
    label: str | None = None


@dataclass(frozen=True)
class ScheduleAnalysis:
    review_id: str
    analysis_type: str = "full_analysis"
    priority: int = 5
    label: str | None = None


@dataclass(frozen=True)
class QueueAction:
    """排队一个后置动作（DOI、排期、生产编辑分配等），由下游 worker 消费。"""

    action: str
    manuscript_id: str
    actor_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    label: str | None = None


Intent = Union[NotifyUser, ScheduleAnalysis, QueueAction]


def intent_label(intent: Intent) -> str:
    if intent.label:
        return intent.label
    if isinstance(intent, NotifyUser):
        return f"notify:{intent.type}"
    if isinstance(intent, ScheduleAnalysis):
        return f"analysis:{intent.analysis_type}"
    return intent.action
