from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from pydantic.alias_generators import to_snake

from editorial_flow.core.errors import NotFound
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.decision import DecisionActions, DecisionTemplate

logger = logging.getLogger("editorialflow.decisions")

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DECISION_LABELS: dict[str, str] = {
    "accepted": "Accepted",
    "revisions_requested": "Revisions Requested",
    "rejected": "Rejected",
}


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """
    `{{name}}` 占位符替换；未知变量原样保留，方便编辑在信中发现遗漏。
    """

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        value = variables.get(key)
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, text or "")


class DecisionTemplateService:
    """
    决策信模板：加载、渲染、默认动作合并、使用次数统计。
    """

    def __init__(self, *, client: Any = None) -> None:
        self.client = client or supabase_admin

    def get_template(self, template_id: str) -> DecisionTemplate:
        resp = self.client.table("editorial_templates").select("*").eq("id", template_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise NotFound("Decision template not found")
        row = rows[0]
        content = row.get("template_content") or {}
        return DecisionTemplate.model_validate(
            {
                "id": row.get("id"),
                "name": row.get("name") or "",
                "decision_type": row.get("decision_type"),
                "version": row.get("version") or 1,
                "sections": content.get("sections") or [],
                "variables": content.get("variables") or [],
                "default_actions": content.get("defaultActions") or content.get("default_actions") or {},
                "usage_count": row.get("usage_count") or 0,
            }
        )

    def render_letter(self, template: DecisionTemplate, variables: Mapping[str, Any]) -> str:
        sections = sorted(template.sections, key=lambda s: s.order)
        parts = [render_text(s.content, variables).strip() for s in sections]
        return "\n\n".join(p for p in parts if p)

    def apply_default_actions(self, actions: DecisionActions, template: DecisionTemplate) -> DecisionActions:
        """
        模板默认动作只填充调用方未显式给出的字段。
        """
        explicit = set(actions.model_fields_set)
        updates: dict[str, Any] = {}
        for raw_key, value in (template.default_actions or {}).items():
            key = to_snake(str(raw_key))
            if key not in DecisionActions.model_fields or key in explicit:
                continue
            updates[key] = value
        if not updates:
            return actions
        merged = {**actions.model_dump(), **updates}
        return DecisionActions.model_validate(merged)

    def increment_usage(self, template: DecisionTemplate) -> None:
        try:
            self.client.table("editorial_templates").update({"usage_count": template.usage_count + 1}).eq(
                "id", template.id
            ).execute()
        except Exception as e:
            logger.warning("[Templates] usage_count update for %s failed (ignored): %s", template.id, e)
