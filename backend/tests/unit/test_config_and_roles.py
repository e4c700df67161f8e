from datetime import datetime, timedelta, timezone

import pytest

from editorial_flow.core.config import SentryConfig, WorkflowConfig, get_admin_api_key
from editorial_flow.core.errors import Forbidden, Unauthorized
from editorial_flow.core.role_matrix import can_perform_action, normalize_roles, require_action
from editorial_flow.core.timeutils import ensure_utc, parse_iso_datetime
from editorial_flow.models.user import Identity


def test_workflow_config_defaults(monkeypatch):
    for key in (
        "WORKFLOW_MAX_REVISION_ROUNDS",
        "REVIEW_DEFAULT_TURNAROUND_DAYS",
        "REVIEW_DEFAULT_MAX_PER_MONTH",
        "REVIEW_EXPIRY_GRACE_DAYS",
        "REVIEWER_NEXT_AVAILABLE_BUFFER_DAYS",
        "REVIEWER_LEAVE_FALLBACK_DAYS",
        "REVIEWER_METRICS_WINDOW_DAYS",
    ):
        monkeypatch.delenv(key, raising=False)

    cfg = WorkflowConfig.from_env()

    assert cfg.max_revision_rounds == 3
    assert cfg.revision_rounds_bounded is True
    assert cfg.default_turnaround_days == 21
    assert cfg.default_max_reviews_per_month == 3
    assert cfg.expiry_grace_days == 7
    assert cfg.leave_fallback_days == 30
    assert cfg.metrics_window_days == 183


def test_workflow_config_env_overrides(monkeypatch):
    monkeypatch.setenv("WORKFLOW_MAX_REVISION_ROUNDS", "0")
    monkeypatch.setenv("REVIEW_DEFAULT_TURNAROUND_DAYS", "-5")
    monkeypatch.setenv("REVIEW_EXPIRY_GRACE_DAYS", "not-a-number")

    cfg = WorkflowConfig.from_env()

    assert cfg.max_revision_rounds == 0
    assert cfg.revision_rounds_bounded is False
    # 下限保护
    assert cfg.default_turnaround_days == 1
    assert cfg.expiry_grace_days == 7


def test_sentry_config_clamps_sample_rate(monkeypatch):
    monkeypatch.setenv("SENTRY_DSN", "https://key@example.invalid/1")
    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "4")
    monkeypatch.delenv("SENTRY_ENABLED", raising=False)

    cfg = SentryConfig.from_env()

    assert cfg.enabled is True
    assert cfg.traces_sample_rate == 1.0


def test_admin_api_key(monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    assert get_admin_api_key() is None
    monkeypatch.setenv("ADMIN_API_KEY", "  secret ")
    assert get_admin_api_key() == "secret"


def test_normalize_roles():
    assert normalize_roles([" Editor", "", None, "ADMIN"]) == {"editor", "admin"}
    assert normalize_roles(None) == set()


@pytest.mark.parametrize(
    "role,action,allowed",
    [
        ("author", "manuscript:create", True),
        ("author", "decision:process", False),
        ("reviewer", "review:write", True),
        ("reviewer", "review:flag", False),
        ("editor", "queue:view", True),
        ("editor", "review:write", False),
        ("admin", "anything:at_all", True),
    ],
)
def test_role_matrix(role, action, allowed):
    assert can_perform_action(action=action, roles=[role]) is allowed


def test_require_action_errors():
    with pytest.raises(Unauthorized):
        require_action(None, "queue:view")
    with pytest.raises(Forbidden):
        require_action(Identity(user_id="u1", role="author"), "queue:view")
    editor = Identity(user_id="u2", role="editor")
    assert require_action(editor, "queue:view") is editor


def test_parse_iso_datetime_variants():
    assert parse_iso_datetime(None) is None
    assert parse_iso_datetime("garbage") is None
    assert parse_iso_datetime("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)
    naive = parse_iso_datetime("2026-03-01T12:00:00")
    assert naive.tzinfo is not None
    shifted = parse_iso_datetime("2026-03-01T14:00:00+02:00")
    assert shifted == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)


def test_ensure_utc():
    naive = datetime(2026, 3, 1, 12)
    assert ensure_utc(naive).tzinfo == timezone.utc
    assert abs(ensure_utc(None) - datetime.now(timezone.utc)) < timedelta(seconds=5)
