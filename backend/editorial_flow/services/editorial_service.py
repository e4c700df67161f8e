from __future__ import annotations

import logging
import uuid
from typing import Any

from editorial_flow.core.config import WorkflowConfig
from editorial_flow.core.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import utc_now, utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.intents import NotifyUser
from editorial_flow.models.manuscript import Manuscript, ManuscriptCreate, ManuscriptStatus, normalize_status
from editorial_flow.models.user import Identity
from editorial_flow.services.activity_log_service import ActivityLogService
from editorial_flow.services.dispatcher import IntentDispatcher

logger = logging.getLogger("editorialflow.workflow")


def generate_submission_number() -> str:
    return f"CJ-{utc_now().year}-{uuid.uuid4().hex[:6].upper()}"


class EditorialService:
    """
    稿件状态机与投稿入口。

    中文注释:
    - transition() 是 manuscripts.status 的唯一写入口；其余方法都经由它改状态。
    - 更新时带 `eq("status", from)` 做乐观并发保护：并发改动会得到 InvalidTransition，而不是静默覆盖。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        config: WorkflowConfig | None = None,
        activity_log: ActivityLogService | None = None,
        dispatcher: IntentDispatcher | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.config = config or WorkflowConfig.from_env()
        self.activity_log = activity_log or ActivityLogService(client=self.client)
        self.dispatcher = dispatcher or IntentDispatcher(client=self.client, activity_log=self.activity_log)

    def get_manuscript(self, manuscript_id: str) -> Manuscript:
        resp = self.client.table("manuscripts").select("*").eq("id", manuscript_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFound("Manuscript not found")
        return Manuscript.model_validate(rows[0])

    def get_visible_manuscript(self, identity: Identity, manuscript_id: str) -> Manuscript:
        """
        作者只能看到自己的稿件；其他人的稿件对作者表现为不存在。
        """
        ms = self.get_manuscript(manuscript_id)
        if identity.role == "author" and ms.author_id != identity.user_id:
            raise NotFound("Manuscript not found")
        return ms

    def transition(
        self,
        *,
        manuscript_id: str,
        to_status: str,
        actor_id: str | None,
        comment: str | None = None,
        expected_from: str | None = None,
        extra_updates: dict[str, Any] | None = None,
    ) -> Manuscript:
        ms = self.get_manuscript(manuscript_id)
        from_status = ms.status.value

        to_norm = normalize_status(to_status)
        if to_norm is None:
            raise ValidationError(f"Invalid status: {to_status}")
        if expected_from is not None and from_status != expected_from:
            raise InvalidTransition(
                f"Manuscript is '{from_status}', expected '{expected_from}'"
            )

        allowed = ManuscriptStatus.allowed_next(from_status)
        if to_norm not in allowed:
            raise InvalidTransition(
                f"Invalid transition: {from_status} -> {to_norm}. Allowed: {sorted(allowed)}"
            )

        update_payload: dict[str, Any] = {"status": to_norm, "updated_at": utc_now_iso()}
        if extra_updates:
            update_payload.update(extra_updates)

        upd = (
            self.client.table("manuscripts")
            .update(update_payload)
            .eq("id", manuscript_id)
            .eq("status", from_status)
            .execute()
        )
        rows = getattr(upd, "data", None) or []
        if not rows:
            # 中文注释: 条件更新 0 行 = 状态已被并发请求改掉
            raise InvalidTransition(f"Manuscript status changed concurrently (was '{from_status}')")

        self.activity_log.record(
            manuscript_id=manuscript_id,
            user_id=actor_id,
            action="status_changed",
            details={"from": from_status, "to": to_norm, "comment": comment},
        )
        logger.info("[Workflow] manuscript=%s %s -> %s by %s", manuscript_id, from_status, to_norm, actor_id)
        return Manuscript.model_validate(rows[0])

    def create_draft(self, identity: Identity, payload: ManuscriptCreate) -> Manuscript:
        require_action(identity, "manuscript:create")
        now = utc_now_iso()
        row = {
            "id": str(uuid.uuid4()),
            "submission_number": generate_submission_number(),
            "title": payload.title.strip(),
            "abstract": payload.abstract,
            "keywords": payload.keywords,
            "field_of_study": payload.field_of_study,
            "priority": payload.priority,
            "has_main_file": payload.has_main_file,
            "status": ManuscriptStatus.DRAFT.value,
            "author_id": identity.user_id,
            "editor_id": None,
            "revision_round": 0,
            "created_at": now,
            "updated_at": now,
        }
        resp = self.client.table("manuscripts").insert(row).execute()
        rows = getattr(resp, "data", None) or [row]
        self.activity_log.record(
            manuscript_id=row["id"],
            user_id=identity.user_id,
            action="manuscript_created",
            details={"submission_number": row["submission_number"]},
        )
        return Manuscript.model_validate(rows[0])

    def confirm_payment(self, manuscript_id: str, *, payment_reference: str | None = None) -> Manuscript:
        """
        支付回调：draft -> submitted。

        中文注释:
        - 签名校验属于边界层职责，这里只接收“某稿件已支付”的事实。
        - 回调可能重放：稿件已离开 draft 时直接返回当前状态（幂等）。
        """
        ms = self.get_manuscript(manuscript_id)
        if ms.status != ManuscriptStatus.DRAFT:
            logger.info("[Payments] manuscript=%s already %s, replay ignored", manuscript_id, ms.status.value)
            return ms
        if not ms.has_main_file:
            raise ValidationError("Main manuscript file is required before submission")

        updated = self.transition(
            manuscript_id=manuscript_id,
            to_status=ManuscriptStatus.SUBMITTED.value,
            actor_id=ms.author_id,
            comment="payment confirmed",
            expected_from=ManuscriptStatus.DRAFT.value,
            extra_updates={"submitted_at": utc_now_iso()},
        )
        self.activity_log.record(
            manuscript_id=manuscript_id,
            user_id=ms.author_id,
            action="payment_completed",
            details={"payment_reference": payment_reference},
        )
        self.dispatcher.dispatch(
            NotifyUser(
                user_id=ms.author_id,
                manuscript_id=manuscript_id,
                type="submission_success",
                title="Submission received",
                message=f'Your manuscript "{ms.title}" has been submitted successfully.',
                data={"submission_number": ms.submission_number},
            )
        )
        return updated

    def assign_editor(self, identity: Identity, manuscript_id: str, editor_id: str | None = None) -> Manuscript:
        require_action(identity, "manuscript:assign_editor")
        target = editor_id or identity.user_id
        if target != identity.user_id:
            if not identity.is_admin:
                raise Forbidden("Editors may only self-assign")
            self._require_editor_profile(target)

        updated = self.transition(
            manuscript_id=manuscript_id,
            to_status=ManuscriptStatus.WITH_EDITOR.value,
            actor_id=identity.user_id,
            comment="editor assigned",
            expected_from=ManuscriptStatus.SUBMITTED.value,
            extra_updates={"editor_id": target},
        )
        if target != identity.user_id:
            self.dispatcher.dispatch(
                NotifyUser(
                    user_id=target,
                    manuscript_id=manuscript_id,
                    type="manuscript_assigned",
                    title="New manuscript assigned",
                    message=f'You have been assigned as handling editor for "{updated.title}".',
                )
            )
        return updated

    def _require_editor_profile(self, user_id: str) -> None:
        resp = self.client.table("profiles").select("id,role").eq("id", user_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        role = str((rows[0] if rows else {}).get("role") or "")
        if role not in {"editor", "admin"}:
            raise ValidationError("Assigned user is not an editor")

    def resubmit_revision(self, identity: Identity, manuscript_id: str) -> Manuscript:
        require_action(identity, "manuscript:resubmit")
        ms = self.get_visible_manuscript(identity, manuscript_id)
        if not identity.is_admin and ms.author_id != identity.user_id:
            raise Forbidden("Only the author may resubmit")

        updated = self.transition(
            manuscript_id=manuscript_id,
            to_status=ManuscriptStatus.UNDER_REVIEW.value,
            actor_id=identity.user_id,
            comment=f"revision round {ms.revision_round + 1} resubmitted",
            expected_from=ManuscriptStatus.REVISIONS_REQUESTED.value,
            extra_updates={"revision_round": ms.revision_round + 1},
        )
        if ms.editor_id:
            self.dispatcher.dispatch(
                NotifyUser(
                    user_id=ms.editor_id,
                    manuscript_id=manuscript_id,
                    type="revision_submitted",
                    title="Revision submitted",
                    message=f'The author has resubmitted "{ms.title}" (round {ms.revision_round + 1}).',
                )
            )
        return updated

    def mark_published(self, identity: Identity, manuscript_id: str, *, doi: str | None = None) -> Manuscript:
        require_action(identity, "manuscript:publish")
        extra: dict[str, Any] = {"published_at": utc_now_iso()}
        if doi:
            extra["doi"] = doi
        updated = self.transition(
            manuscript_id=manuscript_id,
            to_status=ManuscriptStatus.PUBLISHED.value,
            actor_id=identity.user_id,
            comment="published",
            expected_from=ManuscriptStatus.ACCEPTED.value,
            extra_updates=extra,
        )
        self.dispatcher.dispatch(
            NotifyUser(
                user_id=updated.author_id,
                manuscript_id=manuscript_id,
                type="manuscript_published",
                title="Your article is published",
                message=f'"{updated.title}" is now published.',
                data={"doi": updated.doi},
            )
        )
        return updated
