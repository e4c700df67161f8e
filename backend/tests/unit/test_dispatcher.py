from postgrest.exceptions import APIError

from conftest import AUTHOR_ID, EDITOR_ID
from editorial_flow.models.intents import NotifyUser, QueueAction, ScheduleAnalysis, intent_label
from editorial_flow.services.dispatcher import IntentDispatcher


def _notice(**overrides) -> NotifyUser:
    base = {
        "user_id": AUTHOR_ID,
        "manuscript_id": "m-1",
        "type": "editorial_decision",
        "title": "Editorial Decision: Accepted",
        "message": "Congratulations",
    }
    base.update(overrides)
    return NotifyUser(**base)


def test_intent_labels_default_by_kind():
    assert intent_label(_notice()) == "notify:editorial_decision"
    assert intent_label(_notice(label="notify_author")) == "notify_author"
    assert intent_label(ScheduleAnalysis(review_id="r-1")) == "analysis:full_analysis"
    assert intent_label(QueueAction(action="generate_doi", manuscript_id="m-1")) == "generate_doi"


def test_each_intent_kind_is_persisted(db):
    dispatcher = IntentDispatcher(client=db)

    outcomes = dispatcher.dispatch_all(
        [
            _notice(priority="high"),
            ScheduleAnalysis(review_id="r-1", priority=9),
            QueueAction(action="schedule_publication", manuscript_id="m-1", actor_id=EDITOR_ID, details={"k": "v"}),
        ]
    )

    assert outcomes == [
        ("notify:editorial_decision", True),
        ("analysis:full_analysis", True),
        ("schedule_publication", True),
    ]
    notice = db.where("notifications", user_id=AUTHOR_ID)[0]
    assert notice["priority"] == "high"
    assert notice["is_read"] is False
    assert db.where("quality_analysis_jobs", review_id="r-1")[0]["status"] == "pending"
    assert db.where("activity_logs", action="queued_schedule_publication")[0]["details"] == {"k": "v"}


def test_failures_are_isolated_per_intent(db):
    dispatcher = IntentDispatcher(client=db)
    db.fail_on[("notifications", "insert")] = RuntimeError("down")

    outcomes = dispatcher.dispatch_all(
        [_notice(), QueueAction(action="generate_doi", manuscript_id="m-1")]
    )

    assert outcomes == [("notify:editorial_decision", False), ("generate_doi", True)]


def test_orphan_recipient_is_not_a_failure(db):
    dispatcher = IntentDispatcher(client=db)
    db.fail_on[("notifications", "insert")] = APIError(
        {"code": "23503", "message": "violates foreign key constraint", "details": "", "hint": ""}
    )

    assert dispatcher.dispatch(_notice()) is True
    assert db.rows("notifications") == []


def test_queued_action_failure_reports_false(db):
    dispatcher = IntentDispatcher(client=db)
    db.fail_on[("activity_logs", "insert")] = RuntimeError("audit store down")

    assert dispatcher.dispatch(QueueAction(action="send_to_production", manuscript_id="m-1")) is False
