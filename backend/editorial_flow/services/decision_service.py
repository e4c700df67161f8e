from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from editorial_flow.core.config import WorkflowConfig
from editorial_flow.core.errors import (
    DraftNotFound,
    Forbidden,
    InvalidTransition,
    ValidationError,
    WorkflowError,
)
from editorial_flow.core.role_matrix import require_action
from editorial_flow.core.timeutils import utc_now_iso
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.assignment import ACTIVE_ASSIGNMENT_STATUSES, AssignmentStatus
from editorial_flow.models.decision import (
    DECISION_VALUES,
    DecisionActions,
    DecisionComponents,
    DecisionTemplate,
    EditorialDecision,
    ProcessDecisionResult,
)
from editorial_flow.models.intents import Intent, NotifyUser, QueueAction, intent_label
from editorial_flow.models.manuscript import Manuscript, ManuscriptStatus
from editorial_flow.models.user import Identity
from editorial_flow.services.activity_log_service import ActivityLogService
from editorial_flow.services.decision_templates import DECISION_LABELS, DecisionTemplateService
from editorial_flow.services.dispatcher import IntentDispatcher
from editorial_flow.services.editorial_service import EditorialService

logger = logging.getLogger("editorialflow.decisions")

# 最终决策只能在“待决策”阶段做出；under_review 视为编辑带着部分审稿意见强制决策
_FINAL_ELIGIBLE = {ManuscriptStatus.WITH_EDITOR.value, ManuscriptStatus.UNDER_REVIEW.value}
_DRAFT_ELIGIBLE = {
    ManuscriptStatus.SUBMITTED.value,
    ManuscriptStatus.WITH_EDITOR.value,
    ManuscriptStatus.UNDER_REVIEW.value,
    ManuscriptStatus.REVISIONS_REQUESTED.value,
}
# 仅录用稿件才有生产/出版相关的后置动作
_PRODUCTION_ACTIONS = ("assign_production_editor", "generate_doi", "schedule_publication", "send_to_production")


def generate_doi(manuscript_id: str) -> str:
    return f"10.1000/commons.{manuscript_id[:8]}"


class DecisionService:
    """
    编辑决策处理引擎。

    中文注释:
    1) 决策行先落库，再执行状态流转；流转失败时删除/回退决策行（补偿），保证“决策记录 <=> 状态”一致。
    2) 状态流转成功后决策即生效；后置动作（通知/DOI/排期…）逐个独立执行，任何一个失败都不回滚决策。
    3) 返回结果区分“决策已记录”(success/decision_id) 与 “哪些动作成功排队”(queued_actions/failed_actions)。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        config: WorkflowConfig | None = None,
        editorial: EditorialService | None = None,
        templates: DecisionTemplateService | None = None,
        activity_log: ActivityLogService | None = None,
        dispatcher: IntentDispatcher | None = None,
    ) -> None:
        self.client = client or supabase_admin
        self.config = config or WorkflowConfig.from_env()
        self.activity_log = activity_log or ActivityLogService(client=self.client)
        self.dispatcher = dispatcher or IntentDispatcher(client=self.client, activity_log=self.activity_log)
        self.editorial = editorial or EditorialService(
            client=self.client,
            config=self.config,
            activity_log=self.activity_log,
            dispatcher=self.dispatcher,
        )
        self.templates = templates or DecisionTemplateService(client=self.client)

    # ------------------------------------------------------------------ #
    # validation helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _coerce_components(components: DecisionComponents | Mapping[str, Any] | None) -> DecisionComponents:
        if isinstance(components, DecisionComponents):
            return components
        try:
            return DecisionComponents.model_validate(dict(components or {}))
        except PydanticValidationError as e:
            raise ValidationError({"message": "Invalid decision components", "errors": e.errors()}) from e

    @staticmethod
    def _coerce_actions(actions: DecisionActions | Mapping[str, Any] | None) -> DecisionActions:
        if isinstance(actions, DecisionActions):
            return actions
        try:
            return DecisionActions.model_validate(dict(actions or {}))
        except PydanticValidationError as e:
            raise ValidationError({"message": "Invalid decision actions", "errors": e.errors()}) from e

    def _check_manuscript(self, identity: Identity, ms: Manuscript, decision: str, *, is_draft: bool) -> None:
        if not identity.is_admin and ms.editor_id and ms.editor_id != identity.user_id:
            raise Forbidden("Only the handling editor may decide on this manuscript")

        eligible = _DRAFT_ELIGIBLE if is_draft else _FINAL_ELIGIBLE
        if ms.status.value not in eligible:
            raise InvalidTransition(
                f"Manuscript in status '{ms.status.value}' is not eligible for a "
                f"{'draft' if is_draft else 'final'} decision"
            )

        if (
            not is_draft
            and decision == "revisions_requested"
            and self.config.revision_rounds_bounded
            and ms.revision_round >= self.config.max_revision_rounds
        ):
            raise InvalidTransition(
                f"Revision limit reached ({ms.revision_round}/{self.config.max_revision_rounds}); "
                "accept or reject instead"
            )

    def _letter_variables(self, ms: Manuscript, identity: Identity, decision: str) -> dict[str, Any]:
        names = self._profile_names([ms.author_id, identity.user_id])
        return {
            "author_name": names.get(ms.author_id) or "Author",
            "manuscript_title": ms.title,
            "editor_name": names.get(identity.user_id) or "Editor",
            "submission_number": ms.submission_number or "",
            "decision": DECISION_LABELS.get(decision, decision),
        }

    def _profile_names(self, user_ids: list[str]) -> dict[str, str]:
        ids = [u for u in dict.fromkeys(user_ids) if u]
        if not ids:
            return {}
        try:
            resp = self.client.table("profiles").select("id,full_name").in_("id", ids).execute()
        except Exception as e:
            logger.warning("[Decisions] profile name lookup failed (ignored): %s", e)
            return {}
        return {str(r.get("id")): str(r.get("full_name") or "") for r in (getattr(resp, "data", None) or [])}

    # ------------------------------------------------------------------ #
    # operations
    # ------------------------------------------------------------------ #

    def process_decision(
        self,
        identity: Identity,
        manuscript_id: str,
        decision: str,
        components: DecisionComponents | Mapping[str, Any] | None = None,
        actions: DecisionActions | Mapping[str, Any] | None = None,
        *,
        is_draft: bool = False,
        template_id: str | None = None,
    ) -> ProcessDecisionResult:
        require_action(identity, "decision:process")
        if decision not in DECISION_VALUES:
            raise ValidationError(f"Invalid decision '{decision}'. Allowed: {sorted(DECISION_VALUES)}")
        components = self._coerce_components(components)
        actions = self._coerce_actions(actions)
        if not is_draft and not template_id and not components.has_author_letter():
            raise ValidationError("Author letter is required for a final decision")

        ms = self.editorial.get_manuscript(manuscript_id)
        self._check_manuscript(identity, ms, decision, is_draft=is_draft)

        template: DecisionTemplate | None = None
        if template_id:
            template = self.templates.get_template(template_id)
            if template.decision_type != decision:
                raise ValidationError(
                    f"Template '{template.name or template.id}' is for '{template.decision_type}', not '{decision}'"
                )
            if not components.has_author_letter():
                letter = self.templates.render_letter(template, self._letter_variables(ms, identity, decision))
                components = components.model_copy(update={"author_letter": letter})
            actions = self.templates.apply_default_actions(actions, template)
            if not is_draft and not components.has_author_letter():
                raise ValidationError("Author letter is required for a final decision")

        now = utc_now_iso()
        row = {
            "id": str(uuid.uuid4()),
            "manuscript_id": manuscript_id,
            "editor_id": identity.user_id,
            "decision": decision,
            "decision_letter": components.author_letter,
            "internal_notes": components.internal_notes or None,
            "components": components.model_dump(mode="json"),
            "actions": actions.model_dump(mode="json"),
            "template_id": template.id if template else None,
            "template_version": template.version if template else None,
            "is_draft": is_draft,
            "submitted_at": None if is_draft else now,
            "created_at": now,
            "updated_at": now,
        }
        resp = self.client.table("editorial_decisions").insert(row).execute()
        saved = EditorialDecision.model_validate((getattr(resp, "data", None) or [row])[0])

        if is_draft:
            self.activity_log.record(
                manuscript_id=manuscript_id,
                user_id=identity.user_id,
                action="editorial_decision_draft_saved",
                details={"decision_id": saved.id, "decision": decision},
            )
            return ProcessDecisionResult(
                decision_id=saved.id,
                is_draft=True,
                manuscript_status=ms.status.value,
            )

        try:
            updated = self._apply_transition(identity, ms, decision)
        except WorkflowError:
            self._delete_decision(saved.id)
            raise

        return self._after_final(identity, updated, saved, template=template)

    def submit_final_decision(self, identity: Identity, draft_id: str) -> ProcessDecisionResult:
        """
        将某个草稿原地提升为最终决策（同一行，components 不变）。
        """
        require_action(identity, "decision:process")
        resp = self.client.table("editorial_decisions").select("*").eq("id", draft_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise DraftNotFound("Draft decision not found")
        draft = EditorialDecision.model_validate(rows[0])
        if not draft.is_draft or draft.superseded_by:
            raise DraftNotFound("Draft decision not found")
        if not identity.is_admin and draft.editor_id != identity.user_id:
            # 中文注释: 草稿按编辑隔离，其他编辑的草稿视为不存在
            raise DraftNotFound("Draft decision not found")
        if not draft.components.has_author_letter():
            raise ValidationError("Author letter is required for a final decision")

        ms = self.editorial.get_manuscript(draft.manuscript_id)
        self._check_manuscript(identity, ms, draft.decision, is_draft=False)

        now = utc_now_iso()
        upd = (
            self.client.table("editorial_decisions")
            .update({"is_draft": False, "submitted_at": now, "updated_at": now})
            .eq("id", draft_id)
            .eq("is_draft", True)
            .execute()
        )
        promoted_rows = getattr(upd, "data", None) or []
        if not promoted_rows:
            raise DraftNotFound("Draft decision was already finalized")
        promoted = EditorialDecision.model_validate(promoted_rows[0])

        try:
            updated = self._apply_transition(identity, ms, draft.decision)
        except WorkflowError:
            self._revert_to_draft(draft_id)
            raise

        template = None
        if draft.template_id:
            try:
                template = self.templates.get_template(draft.template_id)
            except WorkflowError as e:
                logger.warning("[Decisions] template %s missing at finalization (ignored): %s", draft.template_id, e)
        return self._after_final(identity, updated, promoted, template=template)

    def get_decision_history(self, identity: Identity, manuscript_id: str) -> list[dict[str, Any]]:
        require_action(identity, "decision:view_history")
        ms = self.editorial.get_visible_manuscript(identity, manuscript_id)
        resp = (
            self.client.table("editorial_decisions")
            .select("*")
            .eq("manuscript_id", manuscript_id)
            .eq("is_draft", False)
            .order("created_at", desc=True)
            .execute()
        )
        decisions = [EditorialDecision.model_validate(r) for r in (getattr(resp, "data", None) or [])]
        if identity.role == "author" and ms.author_id == identity.user_id:
            return [d.author_view() for d in decisions]
        return [d.model_dump(mode="json") for d in decisions]

    def get_draft_decisions(
        self,
        identity: Identity,
        manuscript_id: str,
        editor_id: str | None = None,
    ) -> list[EditorialDecision]:
        require_action(identity, "decision:view_drafts")
        self.editorial.get_manuscript(manuscript_id)
        query = (
            self.client.table("editorial_decisions")
            .select("*")
            .eq("manuscript_id", manuscript_id)
            .eq("is_draft", True)
            .is_("superseded_by", "null")
        )
        scoped_editor = editor_id if identity.is_admin else identity.user_id
        if scoped_editor:
            query = query.eq("editor_id", scoped_editor)
        resp = query.order("created_at", desc=True).execute()
        return [EditorialDecision.model_validate(r) for r in (getattr(resp, "data", None) or [])]

    # ------------------------------------------------------------------ #
    # finalization internals
    # ------------------------------------------------------------------ #

    def _apply_transition(self, identity: Identity, ms: Manuscript, decision: str) -> Manuscript:
        current = ms
        if current.status == ManuscriptStatus.UNDER_REVIEW:
            current = self.editorial.transition(
                manuscript_id=ms.id,
                to_status=ManuscriptStatus.WITH_EDITOR.value,
                actor_id=identity.user_id,
                comment="decision forced with partial reviews",
                expected_from=ManuscriptStatus.UNDER_REVIEW.value,
            )

        extra: dict[str, Any] = {"editor_id": ms.editor_id or identity.user_id}
        if decision == ManuscriptStatus.ACCEPTED.value:
            extra["accepted_at"] = utc_now_iso()
        return self.editorial.transition(
            manuscript_id=ms.id,
            to_status=decision,
            actor_id=identity.user_id,
            comment=f"editorial decision: {decision}",
            expected_from=ManuscriptStatus.WITH_EDITOR.value,
            extra_updates=extra,
        )

    def _delete_decision(self, decision_id: str) -> None:
        try:
            self.client.table("editorial_decisions").delete().eq("id", decision_id).execute()
        except Exception as e:
            logger.error("[Decisions] compensation delete of %s failed: %s", decision_id, e)

    def _revert_to_draft(self, decision_id: str) -> None:
        try:
            self.client.table("editorial_decisions").update({"is_draft": True, "submitted_at": None}).eq(
                "id", decision_id
            ).execute()
        except Exception as e:
            logger.error("[Decisions] compensation revert of %s failed: %s", decision_id, e)

    def _after_final(
        self,
        identity: Identity,
        ms: Manuscript,
        decision: EditorialDecision,
        *,
        template: DecisionTemplate | None,
    ) -> ProcessDecisionResult:
        self._supersede_open_drafts(ms.id, final_id=decision.id)
        if decision.decision in {ManuscriptStatus.ACCEPTED.value, ManuscriptStatus.REJECTED.value}:
            self._close_open_assignments(ms.id)
        if template is not None:
            self.templates.increment_usage(template)

        self.activity_log.record(
            manuscript_id=ms.id,
            user_id=identity.user_id,
            action="editorial_decision_submitted",
            details={"decision_id": decision.id, "decision": decision.decision},
        )

        outcomes: dict[str, bool] = {}
        for label, ok in self.dispatcher.dispatch_all(self._post_decision_intents(identity, ms, decision)):
            outcomes[label] = outcomes.get(label, True) and ok

        queued = [label for label, ok in outcomes.items() if ok]
        failed = [label for label, ok in outcomes.items() if not ok]
        logger.info(
            "[Decisions] manuscript=%s decision=%s queued=%s failed=%s",
            ms.id,
            decision.decision,
            queued,
            failed,
        )
        return ProcessDecisionResult(
            decision_id=decision.id,
            is_draft=False,
            manuscript_status=ms.status.value,
            queued_actions=queued,
            failed_actions=failed,
        )

    def _supersede_open_drafts(self, manuscript_id: str, *, final_id: str) -> None:
        try:
            (
                self.client.table("editorial_decisions")
                .update({"superseded_by": final_id, "updated_at": utc_now_iso()})
                .eq("manuscript_id", manuscript_id)
                .eq("is_draft", True)
                .is_("superseded_by", "null")
                .neq("id", final_id)
                .execute()
            )
        except Exception as e:
            logger.warning("[Decisions] superseding drafts for %s failed (ignored): %s", manuscript_id, e)

    def _close_open_assignments(self, manuscript_id: str) -> None:
        try:
            (
                self.client.table("review_assignments")
                .update({"status": AssignmentStatus.COMPLETED.value, "completed_at": utc_now_iso()})
                .eq("manuscript_id", manuscript_id)
                .in_("status", ACTIVE_ASSIGNMENT_STATUSES)
                .execute()
            )
        except Exception as e:
            logger.warning("[Decisions] closing assignments for %s failed (ignored): %s", manuscript_id, e)

    def _completed_reviewer_ids(self, manuscript_id: str) -> list[str]:
        try:
            resp = (
                self.client.table("review_assignments")
                .select("reviewer_id")
                .eq("manuscript_id", manuscript_id)
                .eq("status", AssignmentStatus.COMPLETED.value)
                .execute()
            )
        except Exception as e:
            logger.warning("[Decisions] reviewer lookup for %s failed (ignored): %s", manuscript_id, e)
            return []
        return list(dict.fromkeys(str(r.get("reviewer_id")) for r in (getattr(resp, "data", None) or [])))

    def _post_decision_intents(self, identity: Identity, ms: Manuscript, decision: EditorialDecision) -> list[Intent]:
        actions = decision.actions
        label = DECISION_LABELS.get(decision.decision, decision.decision)
        intents: list[Intent] = []

        if actions.notify_author:
            intents.append(
                NotifyUser(
                    user_id=ms.author_id,
                    manuscript_id=ms.id,
                    type="editorial_decision",
                    title=f"Editorial Decision: {label}",
                    message=decision.decision_letter,
                    data={"decision_id": decision.id, "decision": decision.decision},
                    priority="high",
                    label="notify_author",
                )
            )

        if actions.notify_reviewers:
            for reviewer_id in self._completed_reviewer_ids(ms.id):
                intents.append(
                    NotifyUser(
                        user_id=reviewer_id,
                        manuscript_id=ms.id,
                        type="decision_published",
                        title=f'Decision on "{ms.title}"',
                        message=f"The editor has reached a decision: {label}. Thank you for your review.",
                        data={"decision_id": decision.id, "decision": decision.decision},
                        label="notify_reviewers",
                    )
                )

        if decision.decision == ManuscriptStatus.ACCEPTED.value:
            for action in _PRODUCTION_ACTIONS:
                if not getattr(actions, action):
                    continue
                details: dict[str, Any] = {"decision_id": decision.id}
                if action == "generate_doi":
                    details["doi"] = generate_doi(ms.id)
                intents.append(
                    QueueAction(action=action, manuscript_id=ms.id, actor_id=identity.user_id, details=details)
                )

        if actions.follow_up_date is not None:
            intents.append(
                QueueAction(
                    action="follow_up_reminder",
                    manuscript_id=ms.id,
                    actor_id=identity.user_id,
                    details={"decision_id": decision.id, "follow_up_date": actions.follow_up_date.isoformat()},
                )
            )

        logger.debug("[Decisions] intents for %s: %s", ms.id, [intent_label(i) for i in intents])
        return intents
