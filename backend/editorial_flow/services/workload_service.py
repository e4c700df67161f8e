from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from editorial_flow.core.config import WorkflowConfig
from editorial_flow.core.errors import Forbidden, NotFound, ValidationError
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import ensure_utc, parse_iso_datetime, utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.assignment import (
    ACTIVE_ASSIGNMENT_STATUSES,
    AssignmentStatus,
    AvailabilityResult,
    AvailabilityStatus,
    PerformanceMetrics,
    ReviewAssignment,
    ReviewerProfile,
    ReviewerSettingsUpdate,
)
from editorial_flow.models.user import Identity

logger = logging.getLogger("editorialflow.workload")

_MANUAL_UNAVAILABLE = {AvailabilityStatus.UNAVAILABLE, AvailabilityStatus.ON_LEAVE}


class WorkloadService:
    """
    审稿人负载与可用性。

    中文注释:
    - 当前负载不落库，每次从 review_assignments 实时统计：
      active = accepted/in_progress，pending = invited。
    - available 当且仅当 availability_status == available 且 active + pending < max_reviews_per_month。
    - next_available_date 只是估算：手动请假/不可用没有返回日期，按固定兜底天数给出。
    """

    def __init__(self, *, client: Any = None, config: WorkflowConfig | None = None) -> None:
        self.client = client or supabase_admin
        self.config = config or WorkflowConfig.from_env()

    def get_profile(self, reviewer_id: str) -> ReviewerProfile:
        resp = (
            self.client.table("reviewer_profiles")
            .select("*")
            .eq("reviewer_id", reviewer_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        # 未配置过的审稿人、或列为 NULL 的历史数据，均按平台默认值处理
        defaults = {
            "reviewer_id": reviewer_id,
            "max_reviews_per_month": self.config.default_max_reviews_per_month,
            "preferred_turnaround_days": self.config.default_turnaround_days,
        }
        row = rows[0] if rows else {}
        merged = {**defaults, **{k: v for k, v in row.items() if v is not None}}
        return ReviewerProfile.model_validate(merged)

    def _load_open_assignments(self, reviewer_id: str) -> list[ReviewAssignment]:
        resp = (
            self.client.table("review_assignments")
            .select("*")
            .eq("reviewer_id", reviewer_id)
            .in_("status", ACTIVE_ASSIGNMENT_STATUSES)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        return [ReviewAssignment.model_validate(r) for r in rows]

    def is_available(self, reviewer_id: str, *, now: datetime | None = None) -> AvailabilityResult:
        now = ensure_utc(now)
        profile = self.get_profile(reviewer_id)
        open_rows = self._load_open_assignments(reviewer_id)

        pending = sum(1 for a in open_rows if a.status == AssignmentStatus.INVITED)
        active = len(open_rows) - pending
        load = active + pending
        max_reviews = profile.max_reviews_per_month
        capacity_remaining = max(0, max_reviews - load)

        manual_ok = profile.availability_status == AvailabilityStatus.AVAILABLE
        available = manual_ok and load < max_reviews

        next_available: datetime | None = None
        if profile.availability_status in _MANUAL_UNAVAILABLE:
            next_available = now + timedelta(days=self.config.leave_fallback_days)
        elif not available:
            due_dates = [ensure_utc(a.due_date) for a in open_rows if a.due_date is not None]
            base = min(due_dates) if due_dates else now
            next_available = base + timedelta(days=self.config.next_available_buffer_days)

        return AvailabilityResult(
            reviewer_id=reviewer_id,
            available=available,
            availability_status=profile.availability_status,
            active_assignments=active,
            pending_invitations=pending,
            max_reviews_per_month=max_reviews,
            capacity_remaining=capacity_remaining,
            next_available_date=next_available,
        )

    def get_availability(self, identity: Identity, reviewer_id: str) -> AvailabilityResult:
        require_action(identity, "reviewer:view_availability")
        if identity.role == "reviewer" and identity.user_id != reviewer_id:
            raise Forbidden("Reviewers may only view their own availability")
        return self.is_available(reviewer_id)

    def update_settings(
        self,
        identity: Identity,
        reviewer_id: str,
        settings: ReviewerSettingsUpdate,
    ) -> ReviewerProfile:
        """
        更新审稿人设置；不回溯修改已有邀请/任务。
        """
        require_action(identity, "reviewer:update_settings")
        if not identity.is_admin and identity.user_id != reviewer_id:
            raise Forbidden("Reviewers may only update their own settings")

        changes = settings.model_dump(exclude_none=True, mode="json")
        if not changes:
            raise ValidationError("No settings provided")

        current = self.get_profile(reviewer_id)
        payload = current.model_dump(mode="json", exclude={"updated_at"})
        payload.update(changes)
        payload["updated_at"] = utc_now_iso()

        resp = self.client.table("reviewer_profiles").upsert(payload, on_conflict="reviewer_id").execute()
        rows = getattr(resp, "data", None) or [payload]
        logger.info("[Workload] reviewer=%s settings updated: %s", reviewer_id, sorted(changes))
        return ReviewerProfile.model_validate(rows[0])

    def performance_metrics(self, reviewer_id: str, *, now: datetime | None = None) -> PerformanceMetrics:
        """
        只读聚合（供编辑挑选审稿人参考，不作为硬约束）。
        """
        now = ensure_utc(now)
        window_days = self.config.metrics_window_days
        since = now - timedelta(days=window_days)
        resp = (
            self.client.table("review_assignments")
            .select("*")
            .eq("reviewer_id", reviewer_id)
            .gte("invited_at", since.isoformat())
            .execute()
        )
        rows = getattr(resp, "data", None) or []

        total = len(rows)
        turnaround_days: list[float] = []
        on_time = 0
        completed = 0
        for row in rows:
            if str(row.get("status") or "") != AssignmentStatus.COMPLETED.value:
                continue
            completed += 1
            invited_at = parse_iso_datetime(row.get("invited_at"))
            completed_at = parse_iso_datetime(row.get("completed_at"))
            due_date = parse_iso_datetime(row.get("due_date"))
            if invited_at and completed_at:
                turnaround_days.append((completed_at - invited_at).total_seconds() / 86400)
            if completed_at and due_date and completed_at <= due_date:
                on_time += 1

        return PerformanceMetrics(
            window_days=window_days,
            total_invitations=total,
            completed=completed,
            completion_rate=round(completed / total * 100, 1) if total else 0.0,
            average_turnaround_days=round(sum(turnaround_days) / len(turnaround_days), 1) if turnaround_days else None,
            on_time_rate=round(on_time / completed * 100, 1) if completed else 0.0,
        )

    def workload_summary(self, identity: Identity, reviewer_id: str) -> dict[str, Any]:
        availability = self.get_availability(identity, reviewer_id)
        metrics = self.performance_metrics(reviewer_id)
        return {
            "availability": availability.model_dump(mode="json"),
            "metrics": metrics.model_dump(mode="json"),
        }

    def rank_candidates(
        self,
        identity: Identity,
        manuscript_id: str,
        reviewer_ids: list[str],
    ) -> list[dict[str, Any]]:
        """
        候选审稿人排序：可用优先，其次剩余容量多者优先；稿件作者本人永远排除。
        """
        require_action(identity, "reviewer:rank_candidates")
        resp = self.client.table("manuscripts").select("id,author_id").eq("id", manuscript_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFound("Manuscript not found")
        author_id = str(rows[0].get("author_id") or "")

        seen: set[str] = set()
        out: list[dict[str, Any]] = []
        for rid in reviewer_ids:
            rid = str(rid or "").strip()
            if not rid or rid in seen or rid == author_id:
                continue
            seen.add(rid)
            availability = self.is_available(rid)
            metrics = self.performance_metrics(rid)
            out.append(
                {
                    "reviewer_id": rid,
                    "availability": availability.model_dump(mode="json"),
                    "metrics": metrics.model_dump(mode="json"),
                }
            )

        out.sort(
            key=lambda c: (
                not c["availability"]["available"],
                -int(c["availability"]["capacity_remaining"]),
            )
        )
        return out
