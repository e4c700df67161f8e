from datetime import datetime, timedelta, timezone

import pytest

from conftest import EDITOR_ID, OTHER_EDITOR_ID, make_assignment, make_manuscript
from editorial_flow.core.errors import Forbidden, ValidationError
from editorial_flow.services.queue_service import EditorialQueueService, QueueFilters, classify_urgency, days_between

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "status,days,expected",
    [
        ("submitted", 3, None),
        ("submitted", 4, {"level": "high", "reason": "Needs assignment"}),
        ("with_editor", 7, None),
        ("with_editor", 8, {"level": "medium", "reason": "Needs reviewers"}),
        ("under_review", 21, None),
        ("under_review", 22, {"level": "medium", "reason": "Follow up needed"}),
        ("revisions_requested", 100, None),
        ("accepted", 100, None),
    ],
)
def test_classify_urgency_table(status, days, expected):
    assert classify_urgency(status, days) == expected


def test_with_editor_without_reviewers_needs_assignment_early():
    assert classify_urgency("with_editor", 4, reviewer_count=0) == {"level": "high", "reason": "Needs assignment"}
    assert classify_urgency("with_editor", 4, reviewer_count=2) is None
    assert classify_urgency("with_editor", 8, reviewer_count=1) == {"level": "medium", "reason": "Needs reviewers"}


def test_days_between_is_never_negative():
    assert days_between(None, NOW) == 0.0
    assert days_between(NOW + timedelta(days=1), NOW) == 0.0
    assert days_between(NOW - timedelta(hours=36), NOW) == pytest.approx(1.5)


@pytest.fixture
def svc(db):
    return EditorialQueueService(client=db)


def _ms(db, status, days, **overrides):
    return make_manuscript(db, status=status, submitted_at=(NOW - timedelta(days=days)).isoformat(), **overrides)


def test_queue_summary_and_urgency(db, svc, editor):
    new = _ms(db, "submitted", 5, editor_id=None)
    waiting = _ms(db, "with_editor", 10)
    make_assignment(db, waiting["id"], status="completed")
    lonely = _ms(db, "with_editor", 5)
    _ms(db, "under_review", 2)
    # 其他编辑负责的稿件不可见
    _ms(db, "with_editor", 30, editor_id=OTHER_EDITOR_ID)

    result = svc.list_queue(editor, now=NOW)

    by_id = {r["id"]: r for r in result["rows"]}
    assert result["summary"]["total"] == 4
    assert result["summary"]["urgent"] == 2
    assert result["summary"]["needs_attention"] == 3
    assert result["summary"]["by_status"] == {"submitted": 1, "with_editor": 2, "under_review": 1}
    assert by_id[new["id"]]["urgency"]["reason"] == "Needs assignment"
    assert by_id[waiting["id"]]["urgency"] == {"level": "medium", "reason": "Needs reviewers"}
    assert by_id[lonely["id"]]["urgency"]["level"] == "high"
    assert by_id[new["id"]]["days_since_submission"] == 5.0


def test_default_sort_is_oldest_first(db, svc, editor):
    young = _ms(db, "with_editor", 1)
    old = _ms(db, "with_editor", 9)

    rows = svc.list_queue(editor, now=NOW)["rows"]

    assert [r["id"] for r in rows] == [old["id"], young["id"]]


def test_views_and_urgent_only(db, svc, editor):
    _ms(db, "submitted", 1, editor_id=None)
    review = _ms(db, "under_review", 30)
    _ms(db, "under_review", 3)

    in_review = svc.list_queue(editor, QueueFilters(view="in_review"), now=NOW)
    assert in_review["summary"]["total"] == 2

    urgent = svc.list_queue(editor, QueueFilters(view="in_review", urgent_only=True), now=NOW)
    assert [r["id"] for r in urgent["rows"]] == [review["id"]]
    assert urgent["pagination"]["total"] == 1


def test_my_manuscripts_view(db, svc, editor):
    mine = _ms(db, "revisions_requested", 2)
    _ms(db, "submitted", 2, editor_id=None)

    rows = svc.list_queue(editor, QueueFilters(view="my_manuscripts"), now=NOW)["rows"]

    assert [r["id"] for r in rows] == [mine["id"]]
    assert rows[0]["editor_id"] == EDITOR_ID


def test_admin_sees_every_editor(db, svc, admin):
    _ms(db, "with_editor", 2)
    _ms(db, "with_editor", 2, editor_id=OTHER_EDITOR_ID)
    assert svc.list_queue(admin, now=NOW)["summary"]["total"] == 2


def test_pagination_is_clamped(db, svc, editor):
    for i in range(5):
        _ms(db, "with_editor", i)

    page = svc.list_queue(editor, QueueFilters(page=2, page_size=2), now=NOW)
    assert len(page["rows"]) == 2
    assert page["pagination"] == {"page": 2, "page_size": 2, "total": 5}

    clamped = svc.list_queue(editor, QueueFilters(page=0, page_size=1000), now=NOW)
    assert clamped["pagination"]["page"] == 1
    assert clamped["pagination"]["page_size"] == 100


def test_sort_by_priority(db, svc, editor):
    low = _ms(db, "with_editor", 1, priority="low")
    urgent = _ms(db, "with_editor", 1, priority="urgent")

    rows = svc.list_queue(editor, QueueFilters(sort_by="priority"), now=NOW)["rows"]

    assert [r["id"] for r in rows] == [urgent["id"], low["id"]]


def test_reviewer_count_failure_falls_back_to_status_rules(db, svc, editor):
    ms = _ms(db, "with_editor", 5)
    db.fail_on[("review_assignments", "select")] = RuntimeError("timeout")

    rows = svc.list_queue(editor, now=NOW)["rows"]

    assert rows[0]["id"] == ms["id"]
    assert rows[0]["urgency"] is None


def test_queue_rejects_bad_input(svc, editor, reviewer):
    with pytest.raises(ValidationError):
        svc.list_queue(editor, QueueFilters(statuses=("pre_check",)), now=NOW)
    with pytest.raises(Forbidden):
        svc.list_queue(reviewer, now=NOW)
