from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from bug_router.errors import InvalidTransitionError, RecordNotFoundError
from bug_router.models import Category, LifecycleState, TrackingAction
from bug_router.tracking.store import SQLiteIssueStore
from bug_router.tracking.tracker import IssueStateTracker

BUG = "Login button returns 500 error when clicked"


def test_first_report_creates_record(tracker: IssueStateTracker, make_report) -> None:
    result = tracker.track_issue(make_report(BUG))

    assert result.should_proceed
    assert result.action is TrackingAction.NEW_ISSUE_CREATED
    assert result.record.state is LifecycleState.NEW
    assert tracker.get(result.record.id).text == BUG


def test_same_issue_with_cosmetic_changes_is_a_duplicate(tracker, make_report, clock) -> None:
    first = tracker.track_issue(make_report(BUG))
    clock.advance(hours=1)

    second = tracker.track_issue(make_report("LOGIN button returns 503 error... when clicked", author="U999"))

    assert not second.should_proceed
    assert second.action is TrackingAction.DUPLICATE_DETECTED
    assert second.record.id == first.record.id
    assert second.record.duplicate_count == 1
    assert second.record.additional_reporters == ["U999"]
    assert second.record.state is LifecycleState.NEW


def test_duplicate_does_not_reset_time_in_state(tracker, make_report, clock) -> None:
    record = tracker.track_issue(make_report(BUG)).record
    created = record.updated_at
    clock.advance(hours=5)

    tracker.track_issue(make_report(BUG, author="U2"))

    assert tracker.get(record.id).updated_at == created


def test_repeat_from_original_author_is_not_added_as_reporter(tracker, make_report) -> None:
    tracker.track_issue(make_report(BUG))
    result = tracker.track_issue(make_report(BUG))

    assert result.record.duplicate_count == 1
    assert result.record.additional_reporters == []


def test_recent_ticket_created_is_plain_duplicate(tracker, make_report, clock) -> None:
    record = tracker.track_issue(make_report(BUG)).record
    tracker.transition(record.id, LifecycleState.ANALYZED)
    tracker.transition(record.id, LifecycleState.TICKET_CREATED, ticket_id="T1", ticket_url="https://t/T1")
    clock.advance(hours=1)

    result = tracker.track_issue(make_report(BUG, author="U2"))

    assert result.action is TrackingAction.DUPLICATE_DETECTED
    assert result.record.references.ticket_url == "https://t/T1"


def test_stale_ticket_created_escalates(tracker, make_report, clock) -> None:
    record = tracker.track_issue(make_report(BUG)).record
    tracker.transition(record.id, LifecycleState.ANALYZED)
    tracker.transition(record.id, LifecycleState.TICKET_CREATED)
    clock.advance(days=1)

    result = tracker.track_issue(make_report(BUG, author="U2"))

    assert not result.should_proceed
    assert result.action is TrackingAction.ESCALATED
    assert result.record.state is LifecycleState.ESCALATED
    assert result.record.references.escalated_by == tracker.config.on_call
    assert result.record.references.escalated_at == clock()
    assert tracker.get(record.id).state is LifecycleState.ESCALATED


def test_stale_pull_request_sends_reminder(tracker, make_report, clock) -> None:
    record = tracker.track_issue(make_report(BUG)).record
    for state in (LifecycleState.ANALYZED, LifecycleState.TICKET_CREATED, LifecycleState.PR_CREATED):
        tracker.transition(record.id, state)
    clock.advance(days=3)

    result = tracker.track_issue(make_report(BUG, author="U2"))

    assert result.action is TrackingAction.REMINDER_SENT
    assert result.record.state is LifecycleState.PR_CREATED
    assert result.record.duplicate_count == 1


def test_analyzed_retry_boundary(tracker, make_report, clock) -> None:
    record = tracker.track_issue(make_report(BUG)).record
    tracker.transition(record.id, LifecycleState.ANALYZED)

    clock.advance(days=2, seconds=-1)
    early = tracker.track_issue(make_report(BUG, author="U2"))
    assert early.action is TrackingAction.DUPLICATE_DETECTED

    clock.advance(seconds=1)
    late = tracker.track_issue(make_report(BUG, author="U3"))
    assert late.should_proceed
    assert late.action is TrackingAction.RETRY_PROCESSING
    assert late.record.id == record.id
    assert late.record.state is LifecycleState.NEW


def test_terminal_record_allows_fresh_record(tracker, make_report) -> None:
    record = tracker.track_issue(make_report(BUG)).record
    tracker.transition(record.id, LifecycleState.CLOSED)

    result = tracker.track_issue(make_report(BUG))

    assert result.action is TrackingAction.NEW_ISSUE_CREATED
    assert result.record.id != record.id


def test_concurrent_reports_create_one_record(make_report, clock) -> None:
    with SQLiteIssueStore() as store:
        tracker = IssueStateTracker(store, clock=clock)
        reports = [make_report(BUG, author=f"U{i}") for i in range(8)]
        results = []
        barrier = threading.Barrier(len(reports))

        def worker(report) -> None:
            barrier.wait()
            results.append(tracker.track_issue(report))

        threads = [threading.Thread(target=worker, args=(report,)) for report in reports]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        created = [r for r in results if r.action is TrackingAction.NEW_ISSUE_CREATED]
        assert len(created) == 1
        assert len({r.record.id for r in results}) == 1
        assert len(list(store.all_records())) == 1
        assert tracker.get(created[0].record.id).duplicate_count == len(reports) - 1


def test_transition_rejects_invalid_move(tracker, make_report) -> None:
    record = tracker.track_issue(make_report(BUG)).record

    with pytest.raises(InvalidTransitionError):
        tracker.transition(record.id, LifecycleState.MERGED)


def test_get_unknown_record_raises(tracker) -> None:
    with pytest.raises(RecordNotFoundError):
        tracker.get("does-not-exist")


def test_attach_keeps_state(tracker, make_report) -> None:
    record = tracker.track_issue(make_report(BUG)).record

    updated = tracker.attach(record.id, issue_number=7, issue_url="https://gh/7")

    assert updated.state is LifecycleState.NEW
    assert tracker.get(record.id).references.issue_number == 7


def test_get_stuck_issues_uses_thresholds(tracker, make_report, clock) -> None:
    stuck = tracker.track_issue(make_report(BUG)).record
    tracker.transition(stuck.id, LifecycleState.ANALYZED)
    tracker.transition(stuck.id, LifecycleState.TICKET_CREATED)
    clock.advance(hours=12)
    recent = tracker.track_issue(make_report("Avatar upload fails with timeout")).record
    tracker.transition(recent.id, LifecycleState.ANALYZED)
    clock.advance(hours=12)

    assert [r.id for r in tracker.get_stuck_issues()] == [stuck.id]
    assert tracker.thresholds[LifecycleState.TICKET_CREATED] == timedelta(days=1)


class _PausingStore:
    """Delegates to a real store, pausing after fingerprint lookups."""

    def __init__(self, inner: SQLiteIssueStore) -> None:
        self._inner = inner
        self.looked_up = threading.Event()

    def find_active(self, fingerprint):
        record = self._inner.find_active(fingerprint)
        self.looked_up.set()
        time.sleep(0.2)
        return record

    def __getattr__(self, name):
        return getattr(self._inner, name)


def test_duplicate_does_not_overwrite_concurrent_transition(make_report, clock) -> None:
    with SQLiteIssueStore() as inner:
        store = _PausingStore(inner)
        tracker = IssueStateTracker(store, clock=clock)
        record = tracker.track_issue(make_report(BUG)).record
        tracker.transition(record.id, LifecycleState.ANALYZED)
        store.looked_up.clear()

        duplicate = threading.Thread(target=tracker.track_issue, args=(make_report(BUG, author="U2"),))
        duplicate.start()
        assert store.looked_up.wait(timeout=5)
        tracker.transition(record.id, LifecycleState.TICKET_CREATED, ticket_id="T1")
        duplicate.join()

        stored = tracker.get(record.id)
        assert stored.state is LifecycleState.TICKET_CREATED
        assert stored.references.ticket_id == "T1"
        assert stored.duplicate_count == 1


def test_attach_updates_classification(tracker, make_report, classifier_for) -> None:
    record = tracker.track_issue(make_report(BUG)).record

    updated = tracker.attach(record.id, classification=classifier_for(Category.CODE_BUG).classify(BUG))

    assert updated.state is LifecycleState.NEW
    assert tracker.get(record.id).classification.action.value == "ai-code-analysis-approved"
