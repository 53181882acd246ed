"""Shared fakes and fixtures for the bug router test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Sequence

import pytest

from bug_router.classification.classifier import IssueClassifier
from bug_router.classification.estimator import RootCauseEstimate, StaticEstimator
from bug_router.errors import ChatError, SourceControlError, TicketingError
from bug_router.integrations.base import SourceIssueRef, TicketRef
from bug_router.models import Category, Report
from bug_router.tracking.store import SQLiteIssueStore
from bug_router.tracking.tracker import IssueStateTracker
from bug_router.utils.config_manager import DailyRunConfig
from bug_router.workflow.orchestrator import WorkflowOrchestrator
from bug_router.workflow.workflows import RemediationWorkflows, WorkflowSettings

START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

CODE_BUG_TEXT = "Login button returns 500 error when clicked"
EDUCATION_TEXT = "I can't find where to create a job post, please help"


class FakeClock:
    """Mutable clock injected wherever ``utc_now`` would be used."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeTicketing:
    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_create = False
        self.fail_update = False

    def create_ticket(
        self,
        title: str,
        body: str,
        priority: str,
        assignees: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> TicketRef:
        if self.fail_create:
            raise TicketingError("ticketing unavailable")
        ticket_id = f"T{len(self.created) + 1}"
        self.created.append(
            {"id": ticket_id, "title": title, "body": body, "priority": priority,
             "assignees": list(assignees), "tags": list(tags)}
        )
        return TicketRef(id=ticket_id, url=f"https://tickets.example/{ticket_id}")

    def update_ticket(self, ticket_id: str, fields: Mapping[str, Any]) -> None:
        if self.fail_update:
            raise TicketingError("ticketing unavailable")
        self.updates.append((ticket_id, dict(fields)))


class FakeHandoff:
    def __init__(self) -> None:
        self.requests: list[tuple[Any, Any, Any]] = []
        self.fail = False

    def request_fix(self, record, ticket, classification) -> SourceIssueRef:
        if self.fail:
            raise SourceControlError("github unavailable")
        self.requests.append((record, ticket, classification))
        number = 100 + len(self.requests)
        return SourceIssueRef(number=number, url=f"https://github.example/issues/{number}")


class FakeChat:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str, str | None]] = []
        self.fail = False

    def post_message(self, channel: str, text: str, thread_ref: str | None = None) -> None:
        if self.fail:
            raise ChatError("chat unavailable")
        self.messages.append((channel, text, thread_ref))


class FakeReportSource:
    def __init__(self, reports_by_channel: Mapping[str, list[Report]] | None = None) -> None:
        self.reports_by_channel = dict(reports_by_channel or {})
        self.calls: list[tuple[str, datetime, int]] = []

    def fetch_reports(self, channel: str, since: datetime, limit: int) -> list[Report]:
        self.calls.append((channel, since, limit))
        return list(self.reports_by_channel.get(channel, []))[:limit]


def make_estimate(top: Category, probability: float = 85.0, confidence: float = 0.9) -> RootCauseEstimate:
    rest = (100.0 - probability) / 3
    return RootCauseEstimate(
        probabilities={category: probability if category is top else rest for category in Category},
        confidence=confidence,
        reasoning=f"mostly {top.value}",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    with SQLiteIssueStore() as issue_store:
        yield issue_store


@pytest.fixture
def tracker(store: SQLiteIssueStore, clock: FakeClock) -> IssueStateTracker:
    return IssueStateTracker(store, clock=clock)


@pytest.fixture
def ticketing() -> FakeTicketing:
    return FakeTicketing()


@pytest.fixture
def handoff() -> FakeHandoff:
    return FakeHandoff()


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def make_report(clock: FakeClock) -> Callable[..., Report]:
    counter = {"n": 0}

    def _make(text: str = CODE_BUG_TEXT, author: str = "U123", channel: str = "C1", **kwargs: Any) -> Report:
        counter["n"] += 1
        kwargs.setdefault("submitted_at", clock())
        kwargs.setdefault("message_ref", f"1709542800.{counter['n']:06d}")
        return Report(text=text, author_id=author, channel_id=channel, **kwargs)

    return _make


@pytest.fixture
def classifier_for() -> Callable[[Category], IssueClassifier]:
    def _build(top: Category, probability: float = 85.0, confidence: float = 0.9) -> IssueClassifier:
        return IssueClassifier(StaticEstimator(make_estimate(top, probability, confidence)))

    return _build


@pytest.fixture
def workflows(ticketing: FakeTicketing, handoff: FakeHandoff, clock: FakeClock) -> RemediationWorkflows:
    return RemediationWorkflows(
        ticketing=ticketing,
        handoff=handoff,
        settings=WorkflowSettings(on_call="oncall", team_channel="CTEAM"),
        clock=clock,
    )


@pytest.fixture
def orchestrator_for(tracker, workflows, chat, classifier_for) -> Callable[..., WorkflowOrchestrator]:
    def _build(top: Category = Category.CODE_BUG, **kwargs: Any) -> WorkflowOrchestrator:
        kwargs.setdefault("daily", DailyRunConfig(rate_limit_pause_seconds=0))
        kwargs.setdefault("sleep", lambda _seconds: None)
        return WorkflowOrchestrator(classifier_for(top), tracker, workflows, chat=chat, **kwargs)

    return _build


@pytest.fixture
def fake_report_source() -> type[FakeReportSource]:
    return FakeReportSource
