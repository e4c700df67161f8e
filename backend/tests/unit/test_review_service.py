import pytest

from conftest import EDITOR_ID, REVIEWER_2_ID, REVIEWER_ID, make_assignment, make_manuscript
from editorial_flow.core.errors import Forbidden, InvalidTransition, ValidationError
from editorial_flow.models.review import ReviewFormData
from editorial_flow.models.user import Identity
from editorial_flow.services.assignment_service import AssignmentService
from editorial_flow.services.review_service import ReviewService

FULL_FORM = ReviewFormData(
    summary="The manuscript proposes a method for protein structure prediction and reports main findings.",
    strengths="Clear writing and a strong evaluation on two datasets.",
    weaknesses="The baseline in Table 2 is missing; I suggest adding one.",
    detailed_comments="On page 4 please consider citing prior work on contact maps.",
    recommendation_justification="Minor revision because the evaluation needs one more baseline.",
    confidential_comments="Solid work.",
)


@pytest.fixture
def svc(db, workflow_config):
    return ReviewService(client=db, assignments=AssignmentService(client=db, config=workflow_config))


@pytest.fixture
def accepted(db):
    ms = make_manuscript(db, status="under_review")
    a = make_assignment(db, ms["id"], REVIEWER_ID, status="accepted")
    return ms, a


def test_first_draft_starts_the_review(db, svc, reviewer, accepted):
    ms, a = accepted

    review = svc.save_draft(reviewer, a["id"], ReviewFormData(summary="Early notes"))

    assert review.submitted_at is None
    assert review.manuscript_id == ms["id"]
    assert db.get("review_assignments", a["id"])["status"] == "in_progress"
    report = db.where("review_quality_reports", review_id=review.id)
    assert len(report) == 1 and report[0]["frozen"] is False


def test_second_draft_updates_same_row(db, svc, reviewer, accepted):
    _, a = accepted
    first = svc.save_draft(reviewer, a["id"], ReviewFormData(summary="Early notes"))
    second = svc.save_draft(reviewer, a["id"], FULL_FORM, recommendation="minor_revisions")

    assert second.id == first.id
    assert len(db.where("reviews", assignment_id=a["id"])) == 1
    assert second.recommendation == "minor_revisions"


def test_draft_requires_own_accepted_assignment(db, svc, reviewer, accepted):
    _, a = accepted
    with pytest.raises(Forbidden):
        svc.save_draft(Identity(user_id=REVIEWER_2_ID, role="reviewer"), a["id"], FULL_FORM)

    invited = make_assignment(db, make_manuscript(db)["id"], REVIEWER_ID, status="invited")
    with pytest.raises(InvalidTransition):
        svc.save_draft(reviewer, invited["id"], FULL_FORM)


def test_submit_lists_missing_fields(svc, reviewer, accepted):
    _, a = accepted
    draft = svc.save_draft(reviewer, a["id"], ReviewFormData(summary="Only a summary so far"))

    with pytest.raises(ValidationError) as exc:
        svc.submit(reviewer, draft.id)

    assert exc.value.detail["missing_fields"] == ["detailed_comments", "recommendation"]


def test_submit_completes_assignment_and_returns_manuscript_to_editor(db, svc, reviewer, accepted):
    ms, a = accepted
    draft = svc.save_draft(reviewer, a["id"], FULL_FORM)

    submitted = svc.submit(reviewer, draft.id, recommendation="minor_revisions", confidence_level=4)

    assert submitted.submitted_at is not None
    assert submitted.confidence_level == 4
    assert db.get("review_assignments", a["id"])["status"] == "completed"
    assert db.get("manuscripts", ms["id"])["status"] == "with_editor"
    assert db.where("activity_logs", action="review_submitted")
    assert db.where("notifications", user_id=EDITOR_ID, type="reviews_completed")
    assert db.where("review_quality_reports", review_id=draft.id)[0]["frozen"] is True


def test_submitted_review_is_immutable(svc, reviewer, accepted):
    _, a = accepted
    draft = svc.save_draft(reviewer, a["id"], FULL_FORM, recommendation="accept")
    svc.submit(reviewer, draft.id)

    with pytest.raises(InvalidTransition):
        svc.save_draft(reviewer, a["id"], ReviewFormData(summary="rewritten"))
    with pytest.raises(InvalidTransition):
        svc.submit(reviewer, draft.id)


def test_quality_failure_does_not_block_draft(db, svc, reviewer, accepted):
    _, a = accepted
    db.fail_on[("review_quality_reports", "upsert")] = RuntimeError("analysis store down")

    review = svc.save_draft(reviewer, a["id"], FULL_FORM)

    assert db.get("reviews", review.id) is not None


def test_withdraw_keeps_row_and_notifies_editor(db, svc, reviewer, accepted):
    _, a = accepted
    draft = svc.save_draft(reviewer, a["id"], FULL_FORM, recommendation="reject")

    with pytest.raises(InvalidTransition):
        svc.withdraw(reviewer, draft.id, "conflict of interest")

    svc.submit(reviewer, draft.id)
    with pytest.raises(ValidationError):
        svc.withdraw(reviewer, draft.id, "  ")

    withdrawn = svc.withdraw(reviewer, draft.id, "conflict of interest")

    assert withdrawn.withdrawn_at is not None
    assert withdrawn.withdrawn_reason == "conflict of interest"
    assert db.get("reviews", draft.id)["submitted_at"] is not None
    assert db.where("notifications", user_id=EDITOR_ID, type="review_withdrawn")

    # 重复撤回直接返回
    again = svc.withdraw(reviewer, draft.id, "again")
    assert again.withdrawn_reason == "conflict of interest"
