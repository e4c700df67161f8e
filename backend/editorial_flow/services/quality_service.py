from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from editorial_flow.core.errors import Forbidden, NotFound
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import parse_iso_datetime, utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.intents import Intent, NotifyUser, ScheduleAnalysis
from editorial_flow.models.review import CRITICAL_FLAGS, AnalysisResult, QualityReport, Review
from editorial_flow.models.user import Identity
from editorial_flow.services.activity_log_service import ActivityLogService
from editorial_flow.services.dispatcher import IntentDispatcher
from editorial_flow.services.review_analyzer import ReviewAnalyzer, report_status

logger = logging.getLogger("editorialflow.quality")

FULL_ANALYSIS_PRIORITY = 9


class QualityService:
    """
    审稿质量报告的持久化与人工标记。

    中文注释:
    - 报告在审稿提交前随内容变化重算；提交时最后一次计算并冻结。
    - 冻结后只允许编辑显式追加 flags（flag_review），flags 只增不删、自动去重。
    - 关键 flag（偏见/伦理/不专业语气）、高严重度告警或 urgent 标记会给负责编辑发紧急通知。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        analyzer: ReviewAnalyzer | None = None,
        activity_log: ActivityLogService | None = None,
        dispatcher: IntentDispatcher | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.analyzer = analyzer or ReviewAnalyzer()
        self.activity_log = activity_log or ActivityLogService(client=self.client)
        self.dispatcher = dispatcher or IntentDispatcher(client=self.client, activity_log=self.activity_log)

    def assist(self, identity: Identity, text: str, section: str) -> AnalysisResult:
        require_action(identity, "review:assist")
        return self.analyzer.analyze(text, section)

    def _load_review(self, review_id: str) -> Review:
        resp = self.client.table("reviews").select("*").eq("id", review_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFound("Review not found")
        return Review.model_validate(rows[0])

    def _load_report(self, review_id: str) -> QualityReport | None:
        resp = (
            self.client.table("review_quality_reports")
            .select("*")
            .eq("review_id", review_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        return QualityReport.model_validate(rows[0]) if rows else None

    def _assignment_due_date(self, assignment_id: str) -> datetime | None:
        resp = (
            self.client.table("review_assignments")
            .select("id,due_date")
            .eq("id", assignment_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        return parse_iso_datetime(rows[0].get("due_date")) if rows else None

    def _handling_editor(self, manuscript_id: str) -> tuple[str | None, str]:
        resp = self.client.table("manuscripts").select("id,editor_id,title").eq("id", manuscript_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            return None, ""
        return rows[0].get("editor_id"), str(rows[0].get("title") or "")

    def _save(self, report: QualityReport) -> QualityReport:
        payload = report.model_dump(mode="json", exclude={"id", "created_at"}, exclude_none=True)
        payload["updated_at"] = utc_now_iso()
        resp = self.client.table("review_quality_reports").upsert(payload, on_conflict="review_id").execute()
        rows = getattr(resp, "data", None) or [payload]
        return QualityReport.model_validate(rows[0])

    def get_report(self, identity: Identity, review_id: str) -> QualityReport:
        require_action(identity, "review:view_quality")
        report = self._load_report(review_id)
        if report is None:
            raise NotFound("Quality report not found")
        return report

    def refresh_report(self, review_id: str) -> QualityReport:
        """
        重算报告；已冻结的报告原样返回。审稿已提交时本次计算即冻结。
        """
        existing = self._load_report(review_id)
        if existing is not None and existing.frozen:
            return existing

        review = self._load_review(review_id)
        computed = self.analyzer.build_report(review, due_date=self._assignment_due_date(review.assignment_id))

        editor_flags = list(existing.editor_flags) if existing else []
        flags = list(dict.fromkeys([*computed.flags, *editor_flags]))
        computed = computed.model_copy(
            update={
                "id": existing.id if existing else None,
                "flags": flags,
                "editor_flags": editor_flags,
                "status": report_status(flags),
                "frozen": review.is_submitted,
            }
        )
        saved = self._save(computed)

        if saved.frozen:
            intents = self._escalation_intents(review, new_flags=saved.flags, report=saved, urgent=False, reason="")
            self.dispatcher.dispatch_all(intents)
        return saved

    def flag_review(
        self,
        identity: Identity,
        review_id: str,
        flags: Iterable[str],
        *,
        reason: str = "",
        urgent: bool = False,
        details: dict[str, Any] | None = None,
    ) -> QualityReport:
        require_action(identity, "review:flag")
        review = self._load_review(review_id)
        editor_id, _ = self._handling_editor(review.manuscript_id)
        if not identity.is_admin and editor_id and editor_id != identity.user_id:
            raise Forbidden("Only the handling editor may flag this review")

        report = self._load_report(review_id) or self.refresh_report(review_id)
        requested = [str(f) for f in flags]
        added = [f for f in dict.fromkeys(requested) if f not in report.flags]
        merged_flags = list(dict.fromkeys([*report.flags, *requested]))
        editor_flags = list(dict.fromkeys([*report.editor_flags, *requested]))

        saved = self._save(
            report.model_copy(
                update={
                    "flags": merged_flags,
                    "editor_flags": editor_flags,
                    "status": "flagged_for_review",
                }
            )
        )
        self.activity_log.record(
            manuscript_id=review.manuscript_id,
            user_id=identity.user_id,
            action="review_flagged",
            details={"review_id": review_id, "flags": requested, "added": added, "reason": reason, **(details or {})},
        )

        if added or urgent:
            self.dispatcher.dispatch_all(
                self._escalation_intents(review, new_flags=added, report=saved, urgent=urgent, reason=reason)
            )
        return saved

    def _escalation_intents(
        self,
        review: Review,
        *,
        new_flags: Iterable[str],
        report: QualityReport,
        urgent: bool,
        reason: str,
    ) -> list[Intent]:
        new_flags = list(new_flags)
        critical = [f for f in new_flags if f in CRITICAL_FLAGS]
        high_warnings = [w for w in report.bias_warnings if w.severity == "high"]
        intents: list[Intent] = []

        if critical or high_warnings or urgent:
            editor_id, title = self._handling_editor(review.manuscript_id)
            if editor_id:
                intents.append(
                    NotifyUser(
                        user_id=editor_id,
                        manuscript_id=review.manuscript_id,
                        type="urgent_review_flag",
                        title="Review flagged for attention",
                        message=f'A review of "{title}" was flagged: {", ".join(critical or new_flags) or "urgent"}.',
                        data={"review_id": review.id, "flags": new_flags, "reason": reason},
                        priority="high",
                    )
                )
            else:
                logger.warning("[Quality] review=%s flagged but manuscript has no handling editor", review.id)

        if "bias_suspected" in new_flags:
            intents.append(
                ScheduleAnalysis(review_id=review.id, analysis_type="full_analysis", priority=FULL_ANALYSIS_PRIORITY)
            )
        return intents
