from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DecisionValue = Literal["accepted", "revisions_requested", "rejected"]
DECISION_VALUES: frozenset[str] = frozenset({"accepted", "revisions_requested", "rejected"})

PostDecisionAction = Literal[
    "notify_author",
    "notify_reviewers",
    "schedule_publication",
    "assign_production_editor",
    "generate_doi",
    "send_to_production",
    "follow_up_reminder",
]


class _CamelModel(BaseModel):
    # 中文注释: 前端沿用 camelCase（authorLetter/notifyAuthor），服务层统一 snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ReviewerExcerpt(_CamelModel):
    reviewer_id: str | None = None
    excerpt: str = ""


class DecisionComponents(_CamelModel):
    """
    决策组成部分（草稿可不完整；最终提交要求 author_letter 非空）。
    """

    editor_summary: str = ""
    author_letter: str = ""
    reviewer_comments: list[ReviewerExcerpt] = Field(default_factory=list)
    internal_notes: str = ""
    conditions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    decision_rationale: str = ""

    def has_author_letter(self) -> bool:
        return bool((self.author_letter or "").strip())


class DecisionActions(_CamelModel):
    notify_author: bool = True
    notify_reviewers: bool = False
    schedule_publication: bool = False
    assign_production_editor: bool = False
    generate_doi: bool = False
    send_to_production: bool = False
    follow_up_date: datetime | None = None


class EditorialDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    manuscript_id: str
    editor_id: str
    decision: DecisionValue
    decision_letter: str = ""
    internal_notes: str | None = None
    components: DecisionComponents = Field(default_factory=DecisionComponents)
    actions: DecisionActions = Field(default_factory=DecisionActions)
    template_id: str | None = None
    template_version: int | None = None
    is_draft: bool = True
    superseded_by: str | None = None
    submitted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def author_view(self) -> dict[str, Any]:
        """作者可见视图：去掉内部备注。"""
        data = self.model_dump(mode="json")
        data.pop("internal_notes", None)
        components = dict(data.get("components") or {})
        components.pop("internal_notes", None)
        data["components"] = components
        return data


class TemplateSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    title: str = ""
    content: str = ""
    order: int = 0


class DecisionTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    decision_type: DecisionValue
    version: int = 1
    sections: list[TemplateSection] = Field(default_factory=list)
    variables: list[str] = Field(default_factory=list)
    default_actions: dict[str, Any] = Field(default_factory=dict)
    usage_count: int = 0


class ProcessDecisionRequest(_CamelModel):
    manuscript_id: str
    decision: str
    components: DecisionComponents = Field(default_factory=DecisionComponents)
    actions: DecisionActions = Field(default_factory=DecisionActions)
    is_draft: bool = False
    template_id: str | None = None


class ProcessDecisionResult(BaseModel):
    success: bool = True
    decision_id: str
    is_draft: bool
    manuscript_status: str
    queued_actions: list[str] = Field(default_factory=list)
    failed_actions: list[str] = Field(default_factory=list)
