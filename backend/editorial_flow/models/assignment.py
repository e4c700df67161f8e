from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AssignmentStatus(str, Enum):
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @classmethod
    def active(cls) -> set[str]:
        """同一 (manuscript, reviewer) 组合至多一条处于这些状态。"""
        return {cls.INVITED.value, cls.ACCEPTED.value, cls.IN_PROGRESS.value}

    @classmethod
    def remindable(cls) -> set[str]:
        return {cls.INVITED.value, cls.ACCEPTED.value}


ACTIVE_ASSIGNMENT_STATUSES = sorted(AssignmentStatus.active())


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"
    ON_LEAVE = "on_leave"


class ReviewAssignment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    manuscript_id: str
    reviewer_id: str
    assigned_by: str | None = None
    status: AssignmentStatus
    invited_at: datetime | None = None
    due_date: datetime | None = None
    responded_at: datetime | None = None
    completed_at: datetime | None = None
    reminder_count: int = 0
    last_reminder_at: datetime | None = None
    decline_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status.value in AssignmentStatus.active()


class ReviewerProfile(BaseModel):
    """
    审稿人的负载设置（当前负载由 review_assignments 实时推导，不在此存储）。
    """

    model_config = ConfigDict(extra="ignore")

    reviewer_id: str
    max_reviews_per_month: int = 3
    preferred_turnaround_days: int = 21
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    updated_at: datetime | None = None


class InviteReviewerRequest(BaseModel):
    manuscript_id: str
    reviewer_id: str
    due_date: datetime | None = Field(default=None, description="留空则按审稿人偏好周期推算")


class RespondRequest(BaseModel):
    """
    审稿邀请回复。

    中文注释: decline 时 reason 字段必须出现（可以是空字符串），缺失即视为校验失败。
    """

    response: Literal["accept", "decline"]
    reason: str | None = None

    @model_validator(mode="after")
    def _require_reason_on_decline(self) -> "RespondRequest":
        if self.response == "decline" and self.reason is None:
            raise ValueError("reason is required when declining (may be empty)")
        return self


class RemindRequest(BaseModel):
    assignment_ids: list[str] = Field(default_factory=list)
    manuscript_ids: list[str] = Field(default_factory=list)
    subject: str = Field("Review reminder", max_length=200)
    message: str = Field("", max_length=5000)

    @model_validator(mode="after")
    def _require_targets(self) -> "RemindRequest":
        if not self.assignment_ids and not self.manuscript_ids:
            raise ValueError("assignment_ids or manuscript_ids is required")
        return self


class ReminderOutcome(BaseModel):
    assignment_id: str
    outcome: Literal["sent", "skipped", "failed"]
    reason: str | None = None


class ReminderBatchResult(BaseModel):
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    results: list[ReminderOutcome] = Field(default_factory=list)


class ReviewerSettingsUpdate(BaseModel):
    availability_status: AvailabilityStatus | None = None
    max_reviews_per_month: int | None = Field(default=None, ge=1, le=20)
    preferred_turnaround_days: int | None = Field(default=None, ge=7, le=60)


class PerformanceMetrics(BaseModel):
    window_days: int
    total_invitations: int = 0
    completed: int = 0
    completion_rate: float = 0.0
    average_turnaround_days: float | None = None
    on_time_rate: float = 0.0


class AvailabilityResult(BaseModel):
    reviewer_id: str
    available: bool
    availability_status: AvailabilityStatus
    active_assignments: int
    pending_invitations: int
    max_reviews_per_month: int
    capacity_remaining: int
    next_available_date: datetime | None = None


class CandidateRankRequest(BaseModel):
    manuscript_id: str
    reviewer_ids: list[str] = Field(..., min_length=1, max_length=50)
