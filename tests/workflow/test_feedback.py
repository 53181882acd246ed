from __future__ import annotations

from types import SimpleNamespace

import pytest

from bug_router.errors import ChatError, InvalidTransitionError
from bug_router.models import Category, LifecycleState
from bug_router.workflow.feedback import (
    FeedbackAction,
    FeedbackHandler,
    FeedbackStatus,
    PullRequestTracker,
)
from bug_router.workflow.workflows import ROUTING_TAGS

BUG = "Login button returns 500 error when clicked"


@pytest.fixture
def feedback(tracker, workflows) -> FeedbackHandler:
    return FeedbackHandler(tracker, workflows, authorized_users=["lead"])


@pytest.fixture
def ticketed(tracker, make_report):
    record = tracker.track_issue(make_report(BUG)).record
    tracker.transition(record.id, LifecycleState.ANALYZED)
    return tracker.transition(record.id, LifecycleState.TICKET_CREATED, ticket_id="T7", ticket_url="https://t/T7")


def test_unrelated_reaction_is_ignored(feedback, ticketed) -> None:
    assert feedback.handle_reaction("thumbsup", ticketed.message_ref, "lead") is None


def test_unauthorized_user_cannot_override(feedback, tracker, ticketed) -> None:
    outcome = feedback.handle_reaction("x", ticketed.message_ref, "random-user")

    assert outcome.status is FeedbackStatus.UNAUTHORIZED
    assert tracker.get(ticketed.id).state is LifecycleState.TICKET_CREATED


def test_empty_authorization_list_allows_nobody(tracker, workflows, ticketed) -> None:
    outcome = FeedbackHandler(tracker, workflows).apply(FeedbackAction.MARK_INVALID, ticketed.message_ref, "lead")

    assert outcome.status is FeedbackStatus.UNAUTHORIZED


def test_unknown_message_is_not_found(feedback) -> None:
    outcome = feedback.handle_reaction("rotating_light", "0000.0000", "lead")

    assert outcome.status is FeedbackStatus.NOT_FOUND
    assert outcome.record is None


def test_escalate_raises_existing_ticket(feedback, tracker, ticketing, ticketed, clock) -> None:
    outcome = feedback.handle_reaction(":rotating_light:", ticketed.message_ref, "lead")

    assert outcome.status is FeedbackStatus.APPLIED
    assert outcome.action is FeedbackAction.ESCALATE
    assert ticketing.updates == [("T7", {"priority": "urgent"})]
    stored = tracker.get(ticketed.id)
    assert stored.state is LifecycleState.ESCALATED
    assert stored.references.escalated_by == "lead"
    assert stored.references.escalated_at == clock()
    assert outcome.notifications[0].audience == "on_call"


def test_escalate_without_ticket_creates_urgent_one(feedback, tracker, ticketing, make_report) -> None:
    record = tracker.track_issue(make_report(BUG)).record

    outcome = feedback.apply(FeedbackAction.ESCALATE, record.message_ref, "lead")

    assert ticketing.created[0]["priority"] == "urgent"
    assert outcome.record.references.ticket_id == "T1"


def test_escalate_with_failing_ticketing_still_escalates(feedback, tracker, ticketing, ticketed) -> None:
    ticketing.fail_update = True

    outcome = feedback.apply(FeedbackAction.ESCALATE, ticketed.message_ref, "lead")

    assert outcome.errors == ["ticketing: ticketing unavailable"]
    assert tracker.get(ticketed.id).state is LifecycleState.ESCALATED


def test_convert_to_support_replies_and_closes(feedback, tracker, ticketing, ticketed) -> None:
    outcome = feedback.handle_reaction("raising_hand", ticketed.message_ref, "lead")

    assert outcome.status is FeedbackStatus.APPLIED
    assert tracker.get(ticketed.id).state is LifecycleState.CLOSED
    assert outcome.notifications[0].thread_ref == ticketed.message_ref
    assert ticketing.updates[0][0] == "T7"
    assert ticketing.updates[0][1]["status"] == "closed"


def test_mark_invalid(feedback, tracker, ticketed) -> None:
    outcome = feedback.handle_reaction("x", ticketed.message_ref, "lead")

    assert outcome.record.state is LifecycleState.INVALID
    assert tracker.store.find_active(ticketed.fingerprint) is None


def test_mark_duplicate(feedback, tracker, ticketed) -> None:
    feedback.handle_reaction("repeat", ticketed.message_ref, "lead")

    assert tracker.get(ticketed.id).state is LifecycleState.DUPLICATE


def test_override_on_terminal_record_is_rejected(feedback, tracker, ticketing, ticketed) -> None:
    tracker.transition(ticketed.id, LifecycleState.CLOSED)

    outcome = feedback.handle_reaction("rotating_light", ticketed.message_ref, "lead")

    assert outcome.status is FeedbackStatus.REJECTED
    assert ticketing.updates == []
    assert outcome.to_dict()["state"] == "closed"


def test_pull_request_lifecycle(tracker, ticketed) -> None:
    pull_requests = PullRequestTracker(tracker)

    pull_requests.record_code_generated(ticketed.id)
    record = pull_requests.record_pull_request(ticketed.id, 42, "https://gh/pull/42")
    assert record.state is LifecycleState.PR_CREATED
    assert record.references.pr_number == 42

    assert pull_requests.advance_review(ticketed.id).state is LifecycleState.UNDER_REVIEW
    assert pull_requests.advance_review(ticketed.id, merged=True).state is LifecycleState.MERGED

    with pytest.raises(InvalidTransitionError):
        pull_requests.advance_review(ticketed.id, merged=False)


def test_closed_pull_request_closes_record(tracker, ticketed) -> None:
    pull_requests = PullRequestTracker(tracker)
    pull_requests.record_pull_request(ticketed.id, 3, "https://gh/pull/3")

    assert pull_requests.advance_review(ticketed.id, merged=False).state is LifecycleState.CLOSED


class FakeThreads:
    def __init__(self, replies: list[str] | None = None, fail: bool = False) -> None:
        self.replies = replies or []
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def fetch_thread_replies(self, channel: str, thread_ref: str) -> list[str]:
        self.calls.append((channel, thread_ref))
        if self.fail:
            raise ChatError("slack unavailable")
        return list(self.replies)


@pytest.fixture
def seen_texts() -> list[str]:
    return []


@pytest.fixture
def reviser(tracker, workflows, classifier_for, seen_texts):
    classifier = classifier_for(Category.CODE_BUG)

    def classify(text, context=None, urgent=False):
        seen_texts.append(text)
        return classifier.classify(text, context, urgent)

    def _build(threads=None) -> FeedbackHandler:
        return FeedbackHandler(
            tracker,
            workflows,
            authorized_users=["lead"],
            classifier=SimpleNamespace(classify=classify),
            threads=threads,
        )

    return _build


@pytest.mark.parametrize("reaction", ["wrench", "memo", "label", "robot_face"])
def test_revision_reactions_on_unknown_message_are_not_found(feedback, ticketing, reaction) -> None:
    outcome = feedback.handle_reaction(reaction, "0000.0000", "lead", clarification="more detail")

    assert outcome.status is FeedbackStatus.NOT_FOUND
    assert ticketing.updates == []


def test_revise_reanalyzes_with_clarification(reviser, tracker, ticketing, ticketed, seen_texts) -> None:
    outcome = reviser().handle_reaction("wrench", ticketed.message_ref, "lead", clarification="Happens on Safari only")

    assert outcome.status is FeedbackStatus.APPLIED
    assert outcome.action is FeedbackAction.REVISE
    assert seen_texts == [f"{BUG}\n\nHappens on Safari only"]
    ticket_id, fields = ticketing.updates[0]
    assert ticket_id == "T7"
    assert fields["name"].startswith("[Revised] ")
    assert "Happens on Safari only" in fields["description"]
    stored = tracker.get(ticketed.id)
    assert stored.state is LifecycleState.TICKET_CREATED
    assert stored.classification.action.value in outcome.message
    assert outcome.notifications[0].thread_ref == ticketed.message_ref


def test_revise_reads_clarification_from_thread(reviser, ticketed, seen_texts) -> None:
    threads = FakeThreads(["It only fails for CSV exports"])

    reviser(threads).apply(FeedbackAction.REVISE, ticketed.message_ref, "lead")

    assert threads.calls == [(ticketed.channel_id, ticketed.message_ref)]
    assert seen_texts == [f"{BUG}\n\nIt only fails for CSV exports"]


def test_revise_survives_unreadable_thread(reviser, ticketed, seen_texts) -> None:
    outcome = reviser(FakeThreads(fail=True)).apply(FeedbackAction.REVISE, ticketed.message_ref, "lead")

    assert outcome.status is FeedbackStatus.APPLIED
    assert seen_texts == [BUG]


def test_revise_collects_ticketing_failure(reviser, ticketing, ticketed) -> None:
    ticketing.fail_update = True

    outcome = reviser().apply(FeedbackAction.REVISE, ticketed.message_ref, "lead", clarification="")

    assert outcome.status is FeedbackStatus.APPLIED
    assert outcome.errors == ["ticketing: ticketing unavailable"]


def test_revise_on_terminal_record_is_rejected(reviser, tracker, ticketing, ticketed) -> None:
    tracker.transition(ticketed.id, LifecycleState.CLOSED)

    outcome = reviser().apply(FeedbackAction.REVISE, ticketed.message_ref, "lead", clarification="x")

    assert outcome.status is FeedbackStatus.REJECTED
    assert ticketing.updates == []


def test_edit_description_appends_clarification(feedback, ticketing, ticketed) -> None:
    outcome = feedback.handle_reaction("memo", ticketed.message_ref, "lead", clarification="Seen since Tuesday")

    assert outcome.status is FeedbackStatus.APPLIED
    ticket_id, fields = ticketing.updates[0]
    assert ticket_id == "T7"
    assert list(fields) == ["description"]
    assert BUG in fields["description"]
    assert "Seen since Tuesday" in fields["description"]


def test_edit_description_needs_clarification(feedback, ticketing, ticketed) -> None:
    outcome = feedback.apply(FeedbackAction.EDIT_DESCRIPTION, ticketed.message_ref, "lead", clarification="  ")

    assert outcome.status is FeedbackStatus.REJECTED
    assert ticketing.updates == []


def test_edit_description_needs_ticket(feedback, tracker, ticketing, make_report) -> None:
    record = tracker.track_issue(make_report(BUG)).record

    outcome = feedback.apply(FeedbackAction.EDIT_DESCRIPTION, record.message_ref, "lead", clarification="more")

    assert outcome.status is FeedbackStatus.REJECTED
    assert ticketing.updates == []


def test_reclassify_updates_priority_and_tags(reviser, tracker, ticketing, ticketed) -> None:
    outcome = reviser().handle_reaction("label", ticketed.message_ref, "lead", clarification="")

    assert outcome.status is FeedbackStatus.APPLIED
    action = tracker.get(ticketed.id).classification.action
    assert outcome.message == f"Reclassified from unclassified to {action.value}"
    ticket_id, fields = ticketing.updates[0]
    assert ticket_id == "T7"
    assert fields["tags"] == list(ROUTING_TAGS[action])
    assert "priority" in fields
    assert outcome.notifications[0].audience == "team"


def test_training_example_is_recorded(feedback, tracker, ticketed, clock) -> None:
    tracker.transition(ticketed.id, LifecycleState.INVALID)

    outcome = feedback.handle_reaction("robot_face", ticketed.message_ref, "lead", clarification="Not a bug")

    assert outcome.status is FeedbackStatus.APPLIED
    [example] = tracker.store.list_training_examples()
    assert example.record_id == ticketed.id
    assert example.text == BUG
    assert example.added_by == "lead"
    assert example.added_at == clock()
    assert example.note == "Not a bug"
