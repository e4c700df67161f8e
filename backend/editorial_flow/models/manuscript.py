from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ManuscriptStatus(str, Enum):
    """
    稿件生命周期状态枚举。

    中文注释:
    - 状态只能通过 EditorialService.transition 改写，任何直接写字段的路径都视为缺陷。
    - 唯一的非单调环路：revisions_requested -> under_review（修回），轮次由配置限制。
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    WITH_EDITOR = "with_editor"
    UNDER_REVIEW = "under_review"
    REVISIONS_REQUESTED = "revisions_requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PUBLISHED = "published"

    @classmethod
    def allowed_next(cls, current: str) -> set[str]:
        """
        状态机规则（显性可见）：
        - draft -> submitted（支付确认 + 主文件存在）
        - submitted -> with_editor（指派编辑）
        - with_editor -> under_review / revisions_requested / accepted / rejected
        - under_review -> with_editor（审稿全部完成，或编辑强制决策）
        - revisions_requested -> under_review（作者修回）
        - accepted -> published
        - rejected / published 为终态
        """
        c = (current or "").strip().lower()
        if c == cls.DRAFT.value:
            return {cls.SUBMITTED.value}
        if c == cls.SUBMITTED.value:
            return {cls.WITH_EDITOR.value}
        if c == cls.WITH_EDITOR.value:
            return {
                cls.UNDER_REVIEW.value,
                cls.REVISIONS_REQUESTED.value,
                cls.ACCEPTED.value,
                cls.REJECTED.value,
            }
        if c == cls.UNDER_REVIEW.value:
            return {cls.WITH_EDITOR.value}
        if c == cls.REVISIONS_REQUESTED.value:
            return {cls.UNDER_REVIEW.value}
        if c == cls.ACCEPTED.value:
            return {cls.PUBLISHED.value}
        return set()

    @classmethod
    def terminal(cls) -> set[str]:
        return {cls.REJECTED.value, cls.PUBLISHED.value}


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    try:
        return ManuscriptStatus(v).value
    except ValueError:
        return None


Priority = Literal["low", "normal", "high", "urgent"]


class Manuscript(BaseModel):
    """稿件实体（datastore 行的边界解析结果）"""

    model_config = ConfigDict(extra="ignore")

    id: str
    submission_number: str | None = None
    title: str = ""
    abstract: str | None = None
    keywords: list[str] = Field(default_factory=list)
    field_of_study: str | None = None
    status: ManuscriptStatus
    editor_id: str | None = None
    author_id: str
    priority: Priority = "normal"
    revision_round: int = 0
    has_main_file: bool = False
    doi: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    submitted_at: datetime | None = None
    accepted_at: datetime | None = None
    published_at: datetime | None = None

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v

    @field_validator("revision_round", mode="before")
    @classmethod
    def _coerce_round(cls, v):
        return v or 0


class ManuscriptCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=500)
    abstract: str | None = Field(default=None, max_length=5000)
    keywords: list[str] = Field(default_factory=list)
    field_of_study: str | None = None
    priority: Priority = "normal"
    has_main_file: bool = False


class AssignEditorRequest(BaseModel):
    editor_id: str | None = Field(default=None, description="留空表示编辑自领")


class PublishRequest(BaseModel):
    doi: str | None = None
