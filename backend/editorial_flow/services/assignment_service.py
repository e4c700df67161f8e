from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable

from postgrest.exceptions import APIError

from editorial_flow.core.config import WorkflowConfig
from editorial_flow.core.errors import (
    CapacityExceeded,
    DuplicateAssignment,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
    is_unique_violation,
)
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import ensure_utc, utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.assignment import (
    ACTIVE_ASSIGNMENT_STATUSES,
    AssignmentStatus,
    ReminderBatchResult,
    ReminderOutcome,
    ReviewAssignment,
)
from editorial_flow.models.intents import NotifyUser
from editorial_flow.models.manuscript import ManuscriptStatus
from editorial_flow.models.user import Identity
from editorial_flow.services.activity_log_service import ActivityLogService
from editorial_flow.services.dispatcher import IntentDispatcher
from editorial_flow.services.editorial_service import EditorialService
from editorial_flow.services.workload_service import WorkloadService

logger = logging.getLogger("editorialflow.assignments")

_INVITABLE_MANUSCRIPT_STATUSES = {ManuscriptStatus.WITH_EDITOR.value, ManuscriptStatus.UNDER_REVIEW.value}


class AssignmentService:
    """
    审稿邀请管理：邀请 / 回复 / 催办 / 过期清扫 / 完成。

    中文注释:
    - “同一稿件同一审稿人至多一条活跃邀请”由存储层部分唯一索引保证；
      应用层先查一次只为给出更友好的报错，竞态输家由 23505 映射为 DuplicateAssignment。
    - 批量操作逐条收集结果，不做全有或全无。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        config: WorkflowConfig | None = None,
        workload: WorkloadService | None = None,
        editorial: EditorialService | None = None,
        activity_log: ActivityLogService | None = None,
        dispatcher: IntentDispatcher | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.config = config or WorkflowConfig.from_env()
        self.activity_log = activity_log or ActivityLogService(client=self.client)
        self.dispatcher = dispatcher or IntentDispatcher(client=self.client, activity_log=self.activity_log)
        self.workload = workload or WorkloadService(client=self.client, config=self.config)
        self.editorial = editorial or EditorialService(
            client=self.client,
            config=self.config,
            activity_log=self.activity_log,
            dispatcher=self.dispatcher,
        )

    def get_assignment(self, assignment_id: str) -> ReviewAssignment:
        resp = self.client.table("review_assignments").select("*").eq("id", assignment_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFound("Assignment not found")
        return ReviewAssignment.model_validate(rows[0])

    def _active_for_pair(self, manuscript_id: str, reviewer_id: str) -> list[dict[str, Any]]:
        resp = (
            self.client.table("review_assignments")
            .select("id,status")
            .eq("manuscript_id", manuscript_id)
            .eq("reviewer_id", reviewer_id)
            .in_("status", ACTIVE_ASSIGNMENT_STATUSES)
            .execute()
        )
        return getattr(resp, "data", None) or []

    def _update_guarded(
        self,
        assignment_id: str,
        *,
        from_statuses: Iterable[str],
        payload: dict[str, Any],
    ) -> ReviewAssignment:
        upd = (
            self.client.table("review_assignments")
            .update(payload)
            .eq("id", assignment_id)
            .in_("status", sorted(from_statuses))
            .execute()
        )
        rows = getattr(upd, "data", None) or []
        if not rows:
            raise InvalidTransition("Assignment status changed concurrently")
        return ReviewAssignment.model_validate(rows[0])

    def invite_reviewer(
        self,
        identity: Identity,
        manuscript_id: str,
        reviewer_id: str,
        due_date: datetime | None = None,
        *,
        now: datetime | None = None,
    ) -> ReviewAssignment:
        require_action(identity, "assignment:invite")
        ms = self.editorial.get_manuscript(manuscript_id)
        if ms.status.value not in _INVITABLE_MANUSCRIPT_STATUSES:
            raise InvalidTransition(f"Cannot invite reviewers while manuscript is '{ms.status.value}'")
        if not identity.is_admin and ms.editor_id and ms.editor_id != identity.user_id:
            raise Forbidden("Only the handling editor may invite reviewers")
        if reviewer_id == ms.author_id:
            raise ValidationError("The author cannot review their own manuscript")

        if self._active_for_pair(manuscript_id, reviewer_id):
            raise DuplicateAssignment("Reviewer already has an active assignment for this manuscript")

        invited_at = ensure_utc(now)
        availability = self.workload.is_available(reviewer_id, now=invited_at)
        if not availability.available:
            next_date = availability.next_available_date.isoformat() if availability.next_available_date else None
            raise CapacityExceeded(
                {
                    "message": "Reviewer is not available for new assignments",
                    "availability_status": availability.availability_status.value,
                    "capacity_remaining": availability.capacity_remaining,
                    "next_available_date": next_date,
                }
            )

        if due_date is not None:
            due = ensure_utc(due_date)
            if due <= invited_at:
                raise ValidationError("due_date must be after the invitation time")
        else:
            profile = self.workload.get_profile(reviewer_id)
            due = invited_at + timedelta(days=profile.preferred_turnaround_days)

        row = {
            "id": str(uuid.uuid4()),
            "manuscript_id": manuscript_id,
            "reviewer_id": reviewer_id,
            "assigned_by": identity.user_id,
            "status": AssignmentStatus.INVITED.value,
            "invited_at": invited_at.isoformat(),
            "due_date": due.isoformat(),
            "reminder_count": 0,
        }
        try:
            resp = self.client.table("review_assignments").insert(row).execute()
        except APIError as e:
            if is_unique_violation(e):
                raise DuplicateAssignment("Reviewer already has an active assignment for this manuscript") from e
            raise
        rows = getattr(resp, "data", None) or [row]
        assignment = ReviewAssignment.model_validate(rows[0])

        self.activity_log.record(
            manuscript_id=manuscript_id,
            user_id=identity.user_id,
            action="reviewer_invited",
            details={"assignment_id": assignment.id, "reviewer_id": reviewer_id, "due_date": row["due_date"]},
        )
        self.dispatcher.dispatch(
            NotifyUser(
                user_id=reviewer_id,
                manuscript_id=manuscript_id,
                type="review_invitation",
                title="Invitation to review",
                message=f'You are invited to review "{ms.title}". Please respond by {due.date().isoformat()}.',
                data={"assignment_id": assignment.id, "due_date": row["due_date"]},
            )
        )
        return assignment

    def respond(
        self,
        identity: Identity,
        assignment_id: str,
        response: str,
        reason: str | None = None,
    ) -> ReviewAssignment:
        require_action(identity, "assignment:respond")
        assignment = self.get_assignment(assignment_id)
        if assignment.reviewer_id != identity.user_id:
            raise Forbidden("Only the invited reviewer may respond")
        if response not in {"accept", "decline"}:
            raise ValidationError("response must be 'accept' or 'decline'")
        if assignment.status != AssignmentStatus.INVITED:
            raise InvalidTransition(f"Assignment is already '{assignment.status.value}'")

        now_iso = utc_now_iso()
        if response == "decline":
            if reason is None:
                raise ValidationError("reason is required when declining (may be empty)")
            updated = self._update_guarded(
                assignment_id,
                from_statuses=[AssignmentStatus.INVITED.value],
                payload={
                    "status": AssignmentStatus.DECLINED.value,
                    "responded_at": now_iso,
                    "decline_reason": reason,
                },
            )
            action, notice = "review_invitation_declined", "declined"
            self._settle_if_no_active(updated.manuscript_id, actor_id=identity.user_id)
        else:
            updated = self._update_guarded(
                assignment_id,
                from_statuses=[AssignmentStatus.INVITED.value],
                payload={"status": AssignmentStatus.ACCEPTED.value, "responded_at": now_iso},
            )
            action, notice = "review_invitation_accepted", "accepted"
            self._enter_review_on_first_acceptance(updated, actor_id=identity.user_id)

        self.activity_log.record(
            manuscript_id=updated.manuscript_id,
            user_id=identity.user_id,
            action=action,
            details={"assignment_id": assignment_id, "reason": reason},
        )
        if updated.assigned_by:
            self.dispatcher.dispatch(
                NotifyUser(
                    user_id=updated.assigned_by,
                    manuscript_id=updated.manuscript_id,
                    type=action,
                    title=f"Review invitation {notice}",
                    message=f"A reviewer has {notice} the review invitation.",
                    data={"assignment_id": assignment_id, "reason": reason},
                )
            )
        return updated

    def _enter_review_on_first_acceptance(self, assignment: ReviewAssignment, *, actor_id: str) -> None:
        ms = self.editorial.get_manuscript(assignment.manuscript_id)
        if ms.status != ManuscriptStatus.WITH_EDITOR:
            return
        try:
            self.editorial.transition(
                manuscript_id=ms.id,
                to_status=ManuscriptStatus.UNDER_REVIEW.value,
                actor_id=actor_id,
                comment="first reviewer accepted",
                expected_from=ManuscriptStatus.WITH_EDITOR.value,
            )
        except InvalidTransition as e:
            # 中文注释: 两位审稿人同时接受时，只有一方能完成流转；另一方的接受本身仍然有效
            logger.info("[Assignments] manuscript=%s already moved on: %s", ms.id, e.detail)

    def start_review(self, assignment_id: str, *, reviewer_id: str) -> ReviewAssignment:
        assignment = self.get_assignment(assignment_id)
        if assignment.reviewer_id != reviewer_id:
            raise Forbidden("Assignment belongs to another reviewer")
        if assignment.status == AssignmentStatus.IN_PROGRESS:
            return assignment
        if assignment.status != AssignmentStatus.ACCEPTED:
            raise InvalidTransition(f"Cannot start a review for a '{assignment.status.value}' assignment")
        return self._update_guarded(
            assignment_id,
            from_statuses=[AssignmentStatus.ACCEPTED.value],
            payload={"status": AssignmentStatus.IN_PROGRESS.value},
        )

    def complete_assignment(self, assignment_id: str, *, actor_id: str) -> ReviewAssignment:
        """
        审稿提交后关闭任务；若稿件已无活跃任务且处于 under_review，则进入 with_editor（待决策）。
        """
        assignment = self.get_assignment(assignment_id)
        if assignment.status == AssignmentStatus.COMPLETED:
            return assignment
        updated = self._update_guarded(
            assignment_id,
            from_statuses=[AssignmentStatus.ACCEPTED.value, AssignmentStatus.IN_PROGRESS.value],
            payload={"status": AssignmentStatus.COMPLETED.value, "completed_at": utc_now_iso()},
        )

        self._settle_if_no_active(updated.manuscript_id, actor_id=actor_id)
        return updated

    def _assignment_statuses(self, manuscript_id: str) -> list[str]:
        resp = (
            self.client.table("review_assignments")
            .select("id,status")
            .eq("manuscript_id", manuscript_id)
            .execute()
        )
        return [str(r.get("status") or "") for r in (getattr(resp, "data", None) or [])]

    def _settle_if_no_active(self, manuscript_id: str, *, actor_id: str | None) -> bool:
        """
        稿件已无活跃任务（完成/拒绝/过期均算结清）且至少有一份已完成审稿时，under_review -> with_editor。

        中文注释: 一份完成的审稿都没有时保持 under_review，由编辑补邀审稿人。
        """
        statuses = self._assignment_statuses(manuscript_id)
        if any(s in ACTIVE_ASSIGNMENT_STATUSES for s in statuses):
            return False
        if AssignmentStatus.COMPLETED.value not in statuses:
            return False
        ms = self.editorial.get_manuscript(manuscript_id)
        if ms.status != ManuscriptStatus.UNDER_REVIEW:
            return False
        try:
            self.editorial.transition(
                manuscript_id=ms.id,
                to_status=ManuscriptStatus.WITH_EDITOR.value,
                actor_id=actor_id,
                comment="all reviews settled",
                expected_from=ManuscriptStatus.UNDER_REVIEW.value,
            )
        except InvalidTransition as e:
            logger.info("[Assignments] manuscript=%s already moved on: %s", ms.id, e.detail)
            return False
        if ms.editor_id:
            self.dispatcher.dispatch(
                NotifyUser(
                    user_id=ms.editor_id,
                    manuscript_id=ms.id,
                    type="reviews_completed",
                    title="All reviews completed",
                    message=f'All reviews for "{ms.title}" are in and a decision is due.',
                )
            )
        return True

    def remind(
        self,
        identity: Identity,
        assignment_ids: Iterable[str],
        subject: str,
        message: str,
        *,
        now: datetime | None = None,
    ) -> ReminderBatchResult:
        """
        批量催办：仅 invited/accepted 会被催办，其余静默跳过并在结果中标记 skipped。
        """
        require_action(identity, "assignment:remind")
        now_iso = ensure_utc(now).isoformat()
        result = ReminderBatchResult()

        for assignment_id in dict.fromkeys(str(x) for x in assignment_ids if str(x or "").strip()):
            outcome = self._remind_one(identity, assignment_id, subject=subject, message=message, now_iso=now_iso)
            result.results.append(outcome)
            if outcome.outcome == "sent":
                result.sent += 1
            elif outcome.outcome == "skipped":
                result.skipped += 1
            else:
                result.failed += 1
        return result

    def _remind_one(
        self,
        identity: Identity,
        assignment_id: str,
        *,
        subject: str,
        message: str,
        now_iso: str,
    ) -> ReminderOutcome:
        try:
            assignment = self.get_assignment(assignment_id)
        except NotFound:
            return ReminderOutcome(assignment_id=assignment_id, outcome="failed", reason="not_found")
        except Exception as e:
            logger.warning("[Assignments] reminder lookup %s failed: %s", assignment_id, e)
            return ReminderOutcome(assignment_id=assignment_id, outcome="failed", reason=str(e))

        if assignment.status.value not in AssignmentStatus.remindable():
            return ReminderOutcome(
                assignment_id=assignment_id,
                outcome="skipped",
                reason=f"status_{assignment.status.value}",
            )

        try:
            self._update_guarded(
                assignment_id,
                from_statuses=AssignmentStatus.remindable(),
                payload={"reminder_count": assignment.reminder_count + 1, "last_reminder_at": now_iso},
            )
        except InvalidTransition:
            return ReminderOutcome(assignment_id=assignment_id, outcome="skipped", reason="status_changed")
        except Exception as e:
            logger.warning("[Assignments] reminder update %s failed: %s", assignment_id, e)
            return ReminderOutcome(assignment_id=assignment_id, outcome="failed", reason=str(e))

        self.dispatcher.dispatch(
            NotifyUser(
                user_id=assignment.reviewer_id,
                manuscript_id=assignment.manuscript_id,
                type="review_reminder",
                title=subject,
                message=message,
                data={"assignment_id": assignment_id, "reminder_count": assignment.reminder_count + 1},
            )
        )
        self.activity_log.record(
            manuscript_id=assignment.manuscript_id,
            user_id=identity.user_id,
            action="reminder_sent",
            details={"assignment_id": assignment_id, "subject": subject},
        )
        return ReminderOutcome(assignment_id=assignment_id, outcome="sent")

    def remind_for_manuscripts(
        self,
        identity: Identity,
        manuscript_ids: Iterable[str],
        subject: str,
        message: str,
    ) -> ReminderBatchResult:
        require_action(identity, "assignment:remind")
        mids = [str(m) for m in dict.fromkeys(manuscript_ids) if str(m or "").strip()]
        if not mids:
            return ReminderBatchResult()
        resp = (
            self.client.table("review_assignments")
            .select("id")
            .in_("manuscript_id", mids)
            .in_("status", sorted(AssignmentStatus.remindable()))
            .execute()
        )
        ids = [str(r.get("id")) for r in (getattr(resp, "data", None) or [])]
        return self.remind(identity, ids, subject, message)

    def expire(self, *, now: datetime | None = None) -> dict[str, Any]:
        """
        过期清扫（外部定时器触发）：due_date + grace 已过且仍为 invited/accepted 的任务置为 expired。

        中文注释: in_progress 表示审稿人已在写，不自动过期，交给编辑催办。
        """
        now = ensure_utc(now)
        cutoff = now - timedelta(days=self.config.expiry_grace_days)
        resp = (
            self.client.table("review_assignments")
            .select("*")
            .in_("status", sorted(AssignmentStatus.remindable()))
            .lt("due_date", cutoff.isoformat())
            .execute()
        )
        rows = getattr(resp, "data", None) or []

        expired: list[str] = []
        failed: list[str] = []
        settled: set[str] = set()
        for row in rows:
            assignment_id = str(row.get("id"))
            try:
                self._update_guarded(
                    assignment_id,
                    from_statuses=AssignmentStatus.remindable(),
                    payload={"status": AssignmentStatus.EXPIRED.value},
                )
            except InvalidTransition:
                continue
            except Exception as e:
                logger.warning("[Assignments] expire %s failed: %s", assignment_id, e)
                failed.append(assignment_id)
                continue
            expired.append(assignment_id)
            self.activity_log.record(
                manuscript_id=row.get("manuscript_id"),
                user_id=None,
                action="assignment_expired",
                details={"assignment_id": assignment_id, "due_date": row.get("due_date")},
            )
            settled.add(str(row.get("manuscript_id")))
        for manuscript_id in sorted(settled):
            try:
                self._settle_if_no_active(manuscript_id, actor_id=None)
            except Exception as e:
                # 中文注释: 稿件流转失败不影响本轮清扫结果，下次清扫或下次审稿完成时会重试
                logger.warning("[Assignments] settle manuscript=%s after expiry failed: %s", manuscript_id, e)
        logger.info("[Assignments] expiry sweep: %d expired, %d failed", len(expired), len(failed))
        return {"expired_count": len(expired), "expired_ids": expired, "failed_ids": failed}

    def list_for_manuscript(self, identity: Identity, manuscript_id: str) -> list[ReviewAssignment]:
        require_action(identity, "assignment:view")
        self.editorial.get_manuscript(manuscript_id)
        resp = (
            self.client.table("review_assignments")
            .select("*")
            .eq("manuscript_id", manuscript_id)
            .order("invited_at", desc=True)
            .execute()
        )
        return [ReviewAssignment.model_validate(r) for r in (getattr(resp, "data", None) or [])]

    def list_for_reviewer(self, identity: Identity) -> list[ReviewAssignment]:
        require_action(identity, "assignment:respond")
        resp = (
            self.client.table("review_assignments")
            .select("*")
            .eq("reviewer_id", identity.user_id)
            .order("invited_at", desc=True)
            .execute()
        )
        return [ReviewAssignment.model_validate(r) for r in (getattr(resp, "data", None) or [])]
