from datetime import datetime, timedelta, timezone

import pytest

from conftest import AUTHOR_ID, EDITOR_ID, REVIEWER_2_ID, REVIEWER_ID, make_assignment, make_manuscript
from editorial_flow.core.errors import (
    CapacityExceeded,
    DuplicateAssignment,
    Forbidden,
    InvalidTransition,
    ValidationError,
)
from editorial_flow.models.assignment import AssignmentStatus
from editorial_flow.models.user import Identity
from editorial_flow.services.assignment_service import AssignmentService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def svc(db, workflow_config):
    return AssignmentService(client=db, config=workflow_config)


def test_invite_creates_invited_assignment_with_default_turnaround(db, svc, editor):
    ms = make_manuscript(db)

    assignment = svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)

    assert assignment.status == AssignmentStatus.INVITED
    assert assignment.assigned_by == EDITOR_ID
    assert assignment.invited_at == NOW
    assert assignment.due_date == NOW + timedelta(days=21)
    assert db.where("activity_logs", action="reviewer_invited")
    notices = db.where("notifications", type="review_invitation")
    assert [n["user_id"] for n in notices] == [REVIEWER_ID]


def test_invite_uses_reviewer_preferred_turnaround(db, svc, editor):
    db.seed("reviewer_profiles", {"reviewer_id": REVIEWER_ID, "max_reviews_per_month": 5, "preferred_turnaround_days": 14})
    ms = make_manuscript(db)

    assignment = svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)

    assert assignment.due_date == NOW + timedelta(days=14)


def test_invite_rejects_due_date_not_after_invitation(db, svc, editor):
    ms = make_manuscript(db)
    with pytest.raises(ValidationError):
        svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, NOW - timedelta(days=1), now=NOW)


def test_invite_rejects_author_as_reviewer(db, svc, editor):
    ms = make_manuscript(db)
    with pytest.raises(ValidationError):
        svc.invite_reviewer(editor, ms["id"], AUTHOR_ID, now=NOW)


def test_invite_requires_handling_editor(db, svc, other_editor):
    ms = make_manuscript(db)
    with pytest.raises(Forbidden):
        svc.invite_reviewer(other_editor, ms["id"], REVIEWER_ID, now=NOW)


def test_invite_requires_editor_role(db, svc, reviewer):
    ms = make_manuscript(db)
    with pytest.raises(Forbidden):
        svc.invite_reviewer(reviewer, ms["id"], REVIEWER_2_ID, now=NOW)


def test_invite_rejected_outside_review_phase(db, svc, editor):
    ms = make_manuscript(db, status="submitted")
    with pytest.raises(InvalidTransition):
        svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)


def test_capacity_counts_pending_invitations(db, svc, editor):
    """两条已接受 + 一条待回复，上限 3：已满，不可再邀请。"""
    db.seed("reviewer_profiles", {"reviewer_id": REVIEWER_ID, "max_reviews_per_month": 3, "preferred_turnaround_days": 21})
    for status in ("accepted", "accepted", "invited"):
        make_assignment(db, make_manuscript(db)["id"], REVIEWER_ID, status=status)
    target = make_manuscript(db)

    availability = svc.workload.is_available(REVIEWER_ID, now=NOW)
    assert availability.available is False
    assert availability.capacity_remaining == 0
    assert availability.active_assignments == 2
    assert availability.pending_invitations == 1

    with pytest.raises(CapacityExceeded) as exc:
        svc.invite_reviewer(editor, target["id"], REVIEWER_ID, now=NOW)
    assert exc.value.detail["capacity_remaining"] == 0
    assert exc.value.status_code == 409
    assert db.where("review_assignments", manuscript_id=target["id"]) == []


def test_unavailable_reviewer_cannot_be_invited(db, svc, editor):
    db.seed("reviewer_profiles", {"reviewer_id": REVIEWER_ID, "availability_status": "on_leave"})
    ms = make_manuscript(db)
    with pytest.raises(CapacityExceeded):
        svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)


def test_repeat_invite_is_duplicate(db, svc, editor):
    ms = make_manuscript(db)
    svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)
    with pytest.raises(DuplicateAssignment):
        svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)
    assert len(db.where("review_assignments", manuscript_id=ms["id"])) == 1


def test_race_loser_gets_duplicate_from_unique_constraint(db, svc, editor, monkeypatch):
    ms = make_manuscript(db)
    make_assignment(db, ms["id"], REVIEWER_ID, status="invited")
    # 模拟并发：预检查时对方尚未提交
    monkeypatch.setattr(svc, "_active_for_pair", lambda *_args: [])

    with pytest.raises(DuplicateAssignment):
        svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)
    assert len(db.where("review_assignments", manuscript_id=ms["id"])) == 1


def test_reinvite_allowed_after_decline(db, svc, editor):
    ms = make_manuscript(db)
    make_assignment(db, ms["id"], REVIEWER_ID, status="declined")
    assignment = svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)
    assert assignment.status == AssignmentStatus.INVITED


def test_invite_survives_notification_failure(db, svc, editor):
    ms = make_manuscript(db)
    db.fail_on[("notifications", "insert")] = RuntimeError("smtp down")

    assignment = svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)

    assert db.get("review_assignments", assignment.id)["status"] == "invited"


def test_accept_moves_manuscript_under_review(db, svc, reviewer):
    ms = make_manuscript(db, status="with_editor")
    a = make_assignment(db, ms["id"], REVIEWER_ID)

    updated = svc.respond(reviewer, a["id"], "accept")

    assert updated.status == AssignmentStatus.ACCEPTED
    assert updated.responded_at is not None
    assert db.get("manuscripts", ms["id"])["status"] == "under_review"
    assert db.where("notifications", user_id=EDITOR_ID, type="review_invitation_accepted")


def test_second_acceptance_keeps_manuscript_under_review(db, svc, reviewer):
    ms = make_manuscript(db, status="under_review")
    a = make_assignment(db, ms["id"], REVIEWER_ID)
    svc.respond(reviewer, a["id"], "accept")
    assert db.get("manuscripts", ms["id"])["status"] == "under_review"


def test_decline_requires_reason_field(db, svc, reviewer):
    ms = make_manuscript(db)
    a = make_assignment(db, ms["id"], REVIEWER_ID)
    with pytest.raises(ValidationError):
        svc.respond(reviewer, a["id"], "decline")

    # 空字符串也算“给出了理由”
    updated = svc.respond(reviewer, a["id"], "decline", "")
    assert updated.status == AssignmentStatus.DECLINED
    assert updated.decline_reason == ""


def test_only_invited_reviewer_may_respond(db, svc):
    ms = make_manuscript(db)
    a = make_assignment(db, ms["id"], REVIEWER_ID)
    with pytest.raises(Forbidden):
        svc.respond(Identity(user_id=REVIEWER_2_ID, role="reviewer"), a["id"], "accept")


def test_cannot_respond_twice(db, svc, reviewer):
    ms = make_manuscript(db)
    a = make_assignment(db, ms["id"], REVIEWER_ID)
    svc.respond(reviewer, a["id"], "accept")
    with pytest.raises(InvalidTransition):
        svc.respond(reviewer, a["id"], "decline", "changed my mind")


def test_remind_reports_per_item_outcomes(db, svc, editor):
    ms = make_manuscript(db)
    invited = make_assignment(db, ms["id"], REVIEWER_ID, status="invited")
    done = make_assignment(db, ms["id"], REVIEWER_2_ID, status="completed")

    result = svc.remind(editor, [invited["id"], invited["id"], done["id"], "missing"], "Reminder", "Please respond")

    assert (result.sent, result.skipped, result.failed) == (1, 1, 1)
    outcomes = {r.assignment_id: r.outcome for r in result.results}
    assert outcomes == {invited["id"]: "sent", done["id"]: "skipped", "missing": "failed"}
    row = db.get("review_assignments", invited["id"])
    assert row["reminder_count"] == 1
    assert row["last_reminder_at"] is not None
    assert len(db.where("notifications", type="review_reminder")) == 1


def test_remind_counts_sent_even_if_notification_fails(db, svc, editor):
    ms = make_manuscript(db)
    a = make_assignment(db, ms["id"], REVIEWER_ID, status="accepted")
    db.fail_on[("notifications", "insert")] = RuntimeError("down")

    result = svc.remind(editor, [a["id"]], "Reminder", "Please submit")

    assert result.sent == 1
    assert db.get("review_assignments", a["id"])["reminder_count"] == 1


def test_remind_for_manuscripts_targets_open_invitations(db, svc, editor):
    ms = make_manuscript(db)
    make_assignment(db, ms["id"], REVIEWER_ID, status="invited")
    make_assignment(db, ms["id"], REVIEWER_2_ID, status="in_progress")

    result = svc.remind_for_manuscripts(editor, [ms["id"]], "Reminder", "")

    assert result.sent == 1
    assert result.skipped == 0


def test_expire_only_touches_overdue_unstarted_assignments(db, svc):
    ms = make_manuscript(db)
    overdue = make_assignment(db, ms["id"], REVIEWER_ID, status="invited", due_date=(NOW - timedelta(days=8)).isoformat())
    within_grace = make_assignment(
        db, make_manuscript(db)["id"], REVIEWER_ID, status="accepted", due_date=(NOW - timedelta(days=3)).isoformat()
    )
    writing = make_assignment(
        db, ms["id"], REVIEWER_2_ID, status="in_progress", due_date=(NOW - timedelta(days=30)).isoformat()
    )

    result = svc.expire(now=NOW)

    assert result["expired_count"] == 1
    assert result["expired_ids"] == [overdue["id"]]
    assert db.get("review_assignments", overdue["id"])["status"] == "expired"
    assert db.get("review_assignments", within_grace["id"])["status"] == "accepted"
    assert db.get("review_assignments", writing["id"])["status"] == "in_progress"
    assert db.where("activity_logs", action="assignment_expired")


def test_expired_assignment_frees_pair_for_reinvite(db, svc, editor):
    ms = make_manuscript(db)
    make_assignment(db, ms["id"], REVIEWER_ID, status="invited", due_date=(NOW - timedelta(days=10)).isoformat())
    svc.expire(now=NOW)

    assignment = svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)
    assert assignment.status == AssignmentStatus.INVITED


def test_complete_last_assignment_returns_manuscript_to_editor(db, svc):
    ms = make_manuscript(db, status="under_review")
    a1 = make_assignment(db, ms["id"], REVIEWER_ID, status="in_progress")
    a2 = make_assignment(db, ms["id"], REVIEWER_2_ID, status="accepted")

    svc.complete_assignment(a1["id"], actor_id=REVIEWER_ID)
    assert db.get("manuscripts", ms["id"])["status"] == "under_review"

    svc.complete_assignment(a2["id"], actor_id=REVIEWER_2_ID)
    assert db.get("manuscripts", ms["id"])["status"] == "with_editor"
    assert db.where("notifications", user_id=EDITOR_ID, type="reviews_completed")


def test_declining_last_open_invitation_returns_manuscript_to_editor(db, svc, reviewer):
    ms = make_manuscript(db, status="under_review")
    done = make_assignment(db, ms["id"], REVIEWER_2_ID, status="accepted")
    pending = make_assignment(db, ms["id"], REVIEWER_ID, status="invited")

    svc.complete_assignment(done["id"], actor_id=REVIEWER_2_ID)
    assert db.get("manuscripts", ms["id"])["status"] == "under_review"

    svc.respond(reviewer, pending["id"], "decline", "")

    assert db.get("manuscripts", ms["id"])["status"] == "with_editor"
    assert db.where("notifications", user_id=EDITOR_ID, type="reviews_completed")


def test_decline_without_any_completed_review_keeps_manuscript_under_review(db, svc, reviewer):
    ms = make_manuscript(db, status="under_review")
    a = make_assignment(db, ms["id"], REVIEWER_ID, status="invited")

    svc.respond(reviewer, a["id"], "decline", "too busy")

    assert db.get("manuscripts", ms["id"])["status"] == "under_review"
    assert not db.where("notifications", user_id=EDITOR_ID, type="reviews_completed")


def test_expiring_last_open_invitation_returns_manuscript_to_editor(db, svc):
    ms = make_manuscript(db, status="under_review")
    done = make_assignment(db, ms["id"], REVIEWER_2_ID, status="accepted")
    make_assignment(db, ms["id"], REVIEWER_ID, status="invited", due_date=(NOW - timedelta(days=10)).isoformat())
    svc.complete_assignment(done["id"], actor_id=REVIEWER_2_ID)

    result = svc.expire(now=NOW)

    assert result["expired_count"] == 1
    assert db.get("manuscripts", ms["id"])["status"] == "with_editor"


def test_list_for_manuscript_requires_editor(db, svc, editor, reviewer):
    ms = make_manuscript(db)
    make_assignment(db, ms["id"], REVIEWER_ID)
    assert len(svc.list_for_manuscript(editor, ms["id"])) == 1
    with pytest.raises(Forbidden):
        svc.list_for_manuscript(reviewer, ms["id"])


def test_invite_with_null_profile_columns_uses_defaults(db, svc, editor):
    db.seed("reviewer_profiles", {"reviewer_id": REVIEWER_ID, "max_reviews_per_month": None, "preferred_turnaround_days": None})
    ms = make_manuscript(db)

    assignment = svc.invite_reviewer(editor, ms["id"], REVIEWER_ID, now=NOW)

    assert assignment.due_date == NOW + timedelta(days=21)
