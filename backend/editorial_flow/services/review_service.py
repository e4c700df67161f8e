from __future__ import annotations

import logging
import uuid
from typing import Any

from editorial_flow.core.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.assignment import AssignmentStatus
from editorial_flow.models.intents import NotifyUser
from editorial_flow.models.review import Review, ReviewFormData
from editorial_flow.models.user import Identity
from editorial_flow.services.activity_log_service import ActivityLogService
from editorial_flow.services.assignment_service import AssignmentService
from editorial_flow.services.dispatcher import IntentDispatcher
from editorial_flow.services.quality_service import QualityService

logger = logging.getLogger("editorialflow.reviews")

_REQUIRED_ON_SUBMIT = ("summary", "detailed_comments")


class ReviewService:
    """
    审稿意见：草稿保存 / 提交 / 撤回。

    中文注释:
    - submitted_at 一旦写入，正文不可再改；唯一允许的后续变更是显式撤回（withdrawn_at），不删除行。
    - 质量报告是派生数据：重算失败只记日志，不影响审稿保存本身。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        assignments: AssignmentService | None = None,
        quality: QualityService | None = None,
        activity_log: ActivityLogService | None = None,
        dispatcher: IntentDispatcher | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.activity_log = activity_log or ActivityLogService(client=self.client)
        self.dispatcher = dispatcher or IntentDispatcher(client=self.client, activity_log=self.activity_log)
        self.assignments = assignments or AssignmentService(
            client=self.client, activity_log=self.activity_log, dispatcher=self.dispatcher
        )
        self.quality = quality or QualityService(
            client=self.client, activity_log=self.activity_log, dispatcher=self.dispatcher
        )

    def get_review(self, review_id: str) -> Review:
        resp = self.client.table("reviews").select("*").eq("id", review_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFound("Review not found")
        return Review.model_validate(rows[0])

    def _review_for_assignment(self, assignment_id: str) -> Review | None:
        resp = self.client.table("reviews").select("*").eq("assignment_id", assignment_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        return Review.model_validate(rows[0]) if rows else None

    def _refresh_quality(self, review_id: str) -> None:
        try:
            self.quality.refresh_report(review_id)
        except Exception as e:
            logger.warning("[Reviews] quality refresh for review=%s failed (ignored): %s", review_id, e)

    def save_draft(
        self,
        identity: Identity,
        assignment_id: str,
        form_data: ReviewFormData,
        *,
        recommendation: str | None = None,
        confidence_level: int | None = None,
    ) -> Review:
        require_action(identity, "review:write")
        assignment = self.assignments.get_assignment(assignment_id)
        if assignment.reviewer_id != identity.user_id:
            raise Forbidden("Assignment belongs to another reviewer")

        existing = self._review_for_assignment(assignment_id)
        if existing is not None and existing.is_submitted:
            raise InvalidTransition("Review already submitted and can no longer be edited")

        # accepted -> in_progress；已 in_progress 时幂等
        self.assignments.start_review(assignment_id, reviewer_id=identity.user_id)

        now = utc_now_iso()
        fields: dict[str, Any] = {
            "form_data": form_data.model_dump(mode="json"),
            "recommendation": recommendation,
            "confidence_level": confidence_level,
            "updated_at": now,
        }
        if existing is None:
            row = {
                "id": str(uuid.uuid4()),
                "manuscript_id": assignment.manuscript_id,
                "reviewer_id": identity.user_id,
                "assignment_id": assignment_id,
                "created_at": now,
                **fields,
            }
            resp = self.client.table("reviews").insert(row).execute()
            rows = getattr(resp, "data", None) or [row]
        else:
            resp = (
                self.client.table("reviews")
                .update(fields)
                .eq("id", existing.id)
                .is_("submitted_at", "null")
                .execute()
            )
            rows = getattr(resp, "data", None) or []
            if not rows:
                raise InvalidTransition("Review was submitted concurrently")

        review = Review.model_validate(rows[0])
        self._refresh_quality(review.id)
        return review

    def submit(
        self,
        identity: Identity,
        review_id: str,
        *,
        form_data: ReviewFormData | None = None,
        recommendation: str | None = None,
        confidence_level: int | None = None,
    ) -> Review:
        require_action(identity, "review:write")
        review = self.get_review(review_id)
        if review.reviewer_id != identity.user_id:
            raise Forbidden("Review belongs to another reviewer")
        if review.is_submitted:
            raise InvalidTransition("Review already submitted")

        form = form_data or review.form_data
        final_recommendation = recommendation or review.recommendation
        missing = [name for name in _REQUIRED_ON_SUBMIT if not form.section_text(name).strip()]
        if not final_recommendation:
            missing.append("recommendation")
        if missing:
            raise ValidationError({"message": "Review is incomplete", "missing_fields": missing})

        assignment = self.assignments.get_assignment(review.assignment_id)
        if assignment.status.value not in {AssignmentStatus.ACCEPTED.value, AssignmentStatus.IN_PROGRESS.value}:
            raise InvalidTransition(f"Cannot submit a review for a '{assignment.status.value}' assignment")

        now = utc_now_iso()
        resp = (
            self.client.table("reviews")
            .update(
                {
                    "form_data": form.model_dump(mode="json"),
                    "recommendation": final_recommendation,
                    "confidence_level": confidence_level or review.confidence_level,
                    "submitted_at": now,
                    "updated_at": now,
                }
            )
            .eq("id", review_id)
            .is_("submitted_at", "null")
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise InvalidTransition("Review was submitted concurrently")
        submitted = Review.model_validate(rows[0])

        self.assignments.complete_assignment(review.assignment_id, actor_id=identity.user_id)
        self.activity_log.record(
            manuscript_id=submitted.manuscript_id,
            user_id=identity.user_id,
            action="review_submitted",
            details={"review_id": review_id, "recommendation": final_recommendation},
        )
        # 提交时最后一次计算并冻结质量报告
        self._refresh_quality(review_id)
        return submitted

    def withdraw(self, identity: Identity, review_id: str, reason: str) -> Review:
        require_action(identity, "review:write")
        review = self.get_review(review_id)
        if review.reviewer_id != identity.user_id and not identity.is_admin:
            raise Forbidden("Review belongs to another reviewer")
        if not review.is_submitted:
            raise InvalidTransition("Only submitted reviews can be withdrawn")
        if review.is_withdrawn:
            return review
        if not (reason or "").strip():
            raise ValidationError("A withdrawal reason is required")

        resp = (
            self.client.table("reviews")
            .update({"withdrawn_at": utc_now_iso(), "withdrawn_reason": reason.strip()})
            .eq("id", review_id)
            .is_("withdrawn_at", "null")
            .execute()
        )
        rows = getattr(resp, "data", None) or []
        withdrawn = Review.model_validate(rows[0]) if rows else self.get_review(review_id)

        self.activity_log.record(
            manuscript_id=review.manuscript_id,
            user_id=identity.user_id,
            action="review_withdrawn",
            details={"review_id": review_id, "reason": reason.strip()},
        )
        ms = self.assignments.editorial.get_manuscript(review.manuscript_id)
        if ms.editor_id:
            self.dispatcher.dispatch(
                NotifyUser(
                    user_id=ms.editor_id,
                    manuscript_id=ms.id,
                    type="review_withdrawn",
                    title="Review withdrawn",
                    message=f'A reviewer withdrew their review of "{ms.title}".',
                    data={"review_id": review_id},
                    priority="high",
                )
            )
        return withdrawn

    def list_for_manuscript(self, identity: Identity, manuscript_id: str) -> list[Review]:
        require_action(identity, "review:view_quality")
        resp = (
            self.client.table("reviews")
            .select("*")
            .eq("manuscript_id", manuscript_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [Review.model_validate(r) for r in (getattr(resp, "data", None) or [])]
