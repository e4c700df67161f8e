from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ReviewRecommendation = Literal["accept", "minor_revisions", "major_revisions", "reject"]
ReviewSection = Literal["summary", "strengths", "weaknesses", "detailed_comments", "recommendation"]
Severity = Literal["low", "medium", "high"]
QualityStatus = Literal["clean", "flagged_for_review"]

QualityFlag = Literal[
    "excellent_quality",
    "needs_improvement",
    "bias_suspected",
    "unprofessional_tone",
    "incomplete_review",
    "inconsistent_recommendation",
    "low_constructiveness",
    "ethical_concern",
]

# 命中任意一项即触发对负责编辑的紧急通知
CRITICAL_FLAGS: frozenset[str] = frozenset({"bias_suspected", "ethical_concern", "unprofessional_tone"})


class ReviewFormData(BaseModel):
    """
    结构化审稿表单。

    中文注释: confidential_comments 仅编辑可见，不参与质量分析，也不出现在作者可见视图。
    """

    model_config = ConfigDict(extra="ignore")

    summary: str = ""
    strengths: str = ""
    weaknesses: str = ""
    detailed_comments: str = ""
    recommendation_justification: str = ""
    confidential_comments: str = ""

    def section_text(self, section: str) -> str:
        if section == "recommendation":
            return self.recommendation_justification
        return str(getattr(self, section, "") or "")


class Review(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    manuscript_id: str
    reviewer_id: str
    assignment_id: str
    form_data: ReviewFormData = Field(default_factory=ReviewFormData)
    recommendation: ReviewRecommendation | None = None
    confidence_level: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    submitted_at: datetime | None = None
    withdrawn_at: datetime | None = None
    withdrawn_reason: str | None = None

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawn_at is not None


class ReviewDraftRequest(BaseModel):
    assignment_id: str
    form_data: ReviewFormData
    recommendation: ReviewRecommendation | None = None
    confidence_level: int | None = Field(default=None, ge=1, le=5)


class ReviewSubmitRequest(BaseModel):
    form_data: ReviewFormData | None = None
    recommendation: ReviewRecommendation | None = None
    confidence_level: int | None = Field(default=None, ge=1, le=5)


class WithdrawReviewRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class AssistanceRequest(BaseModel):
    text: str = ""
    section: ReviewSection


class Suggestion(BaseModel):
    type: Literal["completeness", "clarity", "tone", "structure"]
    section: str
    message: str


class AnalysisWarning(BaseModel):
    type: Literal["tone", "clarity", "bias"]
    severity: Severity
    message: str
    category: str | None = None


class AnalysisResult(BaseModel):
    suggestions: list[Suggestion] = Field(default_factory=list)
    warnings: list[AnalysisWarning] = Field(default_factory=list)
    completeness_score: float = 0.0
    estimated_quality_impact: float = 0.0


class QualityReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    review_id: str
    scores: dict[str, float] = Field(default_factory=dict)
    section_scores: dict[str, float] = Field(default_factory=dict)
    bias_warnings: list[AnalysisWarning] = Field(default_factory=list)
    flags: list[str] = Field(default_factory=list)
    # 编辑手动添加的 flags；重新计算时保留，保证“只增不删”
    editor_flags: list[str] = Field(default_factory=list)
    status: QualityStatus = "clean"
    frozen: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FlagReviewRequest(BaseModel):
    flags: list[QualityFlag] = Field(..., min_length=1)
    reason: str = Field("", max_length=2000)
    urgent: bool = False
    details: dict[str, Any] = Field(default_factory=dict)
