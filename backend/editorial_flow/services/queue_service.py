from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Literal

from editorial_flow.core.errors import ValidationError
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import ensure_utc, parse_iso_datetime
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.assignment import AssignmentStatus
from editorial_flow.models.manuscript import ManuscriptStatus, normalize_status
from editorial_flow.models.user import Identity

logger = logging.getLogger("editorialflow.queue")

QueueView = Literal["all", "new_submissions", "my_manuscripts", "in_review", "awaiting_decision", "revisions"]
QueueSort = Literal["submitted_at", "priority", "urgency", "title"]

_VIEW_STATUSES: dict[str, tuple[str, ...]] = {
    "all": (
        ManuscriptStatus.SUBMITTED.value,
        ManuscriptStatus.WITH_EDITOR.value,
        ManuscriptStatus.UNDER_REVIEW.value,
        ManuscriptStatus.REVISIONS_REQUESTED.value,
        ManuscriptStatus.ACCEPTED.value,
    ),
    "new_submissions": (ManuscriptStatus.SUBMITTED.value,),
    "my_manuscripts": (),
    "in_review": (ManuscriptStatus.UNDER_REVIEW.value,),
    "awaiting_decision": (ManuscriptStatus.WITH_EDITOR.value,),
    "revisions": (ManuscriptStatus.REVISIONS_REQUESTED.value,),
}

_PRIORITY_RANK = {"urgent": 0, "high": 1, "normal": 2, "low": 3}
_URGENCY_RANK = {"high": 0, "medium": 1}

# 被拒绝/已撤回的邀请不算“已找过审稿人”
_COUNTED_ASSIGNMENT_STATUSES = (
    AssignmentStatus.INVITED.value,
    AssignmentStatus.ACCEPTED.value,
    AssignmentStatus.IN_PROGRESS.value,
    AssignmentStatus.COMPLETED.value,
)


def classify_urgency(
    status: str,
    days_since_submission: float,
    *,
    reviewer_count: int | None = None,
) -> dict[str, str] | None:
    """
    纯函数：按状态 + 提交后天数推导紧急度；每次读队列时重算，不落库。
    """
    s = normalize_status(status)
    if s == ManuscriptStatus.SUBMITTED.value and days_since_submission > 3:
        return {"level": "high", "reason": "Needs assignment"}
    if s == ManuscriptStatus.WITH_EDITOR.value:
        if reviewer_count == 0 and days_since_submission > 3:
            return {"level": "high", "reason": "Needs assignment"}
        if days_since_submission > 7:
            return {"level": "medium", "reason": "Needs reviewers"}
    if s == ManuscriptStatus.UNDER_REVIEW.value and days_since_submission > 21:
        return {"level": "medium", "reason": "Follow up needed"}
    return None


def days_between(start: datetime | None, now: datetime) -> float:
    if start is None:
        return 0.0
    return max((now - ensure_utc(start)).total_seconds() / 86400.0, 0.0)


@dataclass(frozen=True)
class QueueFilters:
    """
    编辑队列筛选参数。API 层负责把 Query 参数解析为此对象。
    """

    view: QueueView = "all"
    statuses: tuple[str, ...] = ()
    field_of_study: str | None = None
    priority: str | None = None
    urgent_only: bool = False
    sort_by: QueueSort = "submitted_at"
    sort_order: Literal["asc", "desc"] = "asc"
    page: int = 1
    page_size: int = 20


def _normalize_statuses(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    for raw in values:
        n = normalize_status(raw)
        if n is None:
            raise ValidationError(f"Invalid status: {raw}")
        if n not in out:
            out.append(n)
    return out


class EditorialQueueService:
    """
    编辑工作台队列（读模型）。

    中文注释:
    - 只读，不做任何状态写入。
    - 紧急度是视图而不是状态：每次读取按当前时间重算。
    """

    def __init__(self, *, client: Any = None) -> None:
        self.client = client or supabase_admin

    def _load_rows(self, identity: Identity, filters: QueueFilters) -> list[dict[str, Any]]:
        query = self.client.table("manuscripts").select("*")

        statuses = _normalize_statuses(filters.statuses) or list(_VIEW_STATUSES.get(filters.view, ()))
        if statuses:
            query = query.in_("status", statuses)
        if filters.view == "my_manuscripts":
            query = query.eq("editor_id", identity.user_id)
        if filters.field_of_study:
            query = query.eq("field_of_study", filters.field_of_study)
        if filters.priority:
            query = query.eq("priority", filters.priority)

        resp = query.execute()
        rows = list(getattr(resp, "data", None) or [])
        if identity.is_admin or filters.view == "my_manuscripts":
            return rows
        # 非 admin 只看自己负责的稿件 + 尚未指派的新投稿
        return [r for r in rows if not r.get("editor_id") or r.get("editor_id") == identity.user_id]

    def _reviewer_counts(self, manuscript_ids: list[str]) -> dict[str, int]:
        if not manuscript_ids:
            return {}
        counts = {mid: 0 for mid in manuscript_ids}
        try:
            resp = (
                self.client.table("review_assignments")
                .select("manuscript_id,status")
                .in_("manuscript_id", manuscript_ids)
                .in_("status", list(_COUNTED_ASSIGNMENT_STATUSES))
                .execute()
            )
        except Exception as e:
            # 计数失败时退化为纯状态/天数规则
            logger.warning("[Queue] reviewer count lookup failed (ignored): %s", e)
            return {}
        for row in getattr(resp, "data", None) or []:
            mid = str(row.get("manuscript_id") or "")
            if mid in counts:
                counts[mid] += 1
        return counts

    def list_queue(self, identity: Identity, filters: QueueFilters | None = None, *, now: datetime | None = None) -> dict[str, Any]:
        require_action(identity, "queue:view")
        filters = filters or QueueFilters()
        if filters.view not in _VIEW_STATUSES:
            raise ValidationError(f"Unknown queue view: {filters.view}")
        current = ensure_utc(now)

        rows = self._load_rows(identity, filters)
        with_editor_ids = [
            str(r.get("id")) for r in rows if normalize_status(r.get("status")) == ManuscriptStatus.WITH_EDITOR.value
        ]
        reviewer_counts = self._reviewer_counts(with_editor_ids)

        for row in rows:
            submitted_at = parse_iso_datetime(row.get("submitted_at")) or parse_iso_datetime(row.get("created_at"))
            days = days_between(submitted_at, current)
            row["days_since_submission"] = round(days, 1)
            row["urgency"] = classify_urgency(
                str(row.get("status") or ""),
                days,
                reviewer_count=reviewer_counts.get(str(row.get("id"))),
            )

        summary = {
            "total": len(rows),
            "urgent": sum(1 for r in rows if r.get("urgency") and r["urgency"]["level"] == "high"),
            "needs_attention": sum(1 for r in rows if r.get("urgency")),
            "by_status": {},
        }
        for r in rows:
            key = str(r.get("status") or "")
            summary["by_status"][key] = summary["by_status"].get(key, 0) + 1

        if filters.urgent_only:
            rows = [r for r in rows if r.get("urgency")]

        rows = self._sort(rows, filters)
        page = max(int(filters.page or 1), 1)
        page_size = max(min(int(filters.page_size or 20), 100), 1)
        start = (page - 1) * page_size
        return {
            "rows": rows[start : start + page_size],
            "summary": summary,
            "pagination": {"page": page, "page_size": page_size, "total": len(rows)},
        }

    @staticmethod
    def _sort(rows: list[dict[str, Any]], filters: QueueFilters) -> list[dict[str, Any]]:
        reverse = filters.sort_order == "desc"
        if filters.sort_by == "priority":
            key = lambda r: _PRIORITY_RANK.get(str(r.get("priority") or "normal"), 2)  # noqa: E731
        elif filters.sort_by == "urgency":
            key = lambda r: _URGENCY_RANK.get((r.get("urgency") or {}).get("level"), 2)  # noqa: E731
        elif filters.sort_by == "title":
            key = lambda r: str(r.get("title") or "").lower()  # noqa: E731
        else:
            key = lambda r: -float(r.get("days_since_submission") or 0.0)  # noqa: E731
        return sorted(rows, key=key, reverse=reverse)
