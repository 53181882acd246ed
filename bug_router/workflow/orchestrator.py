"""Routes classified, deduplicated reports to remediation workflows."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from ..classification.classifier import ClassificationResult, IssueClassifier
from ..errors import CollaboratorError
from ..models import (
    IssueRecord,
    LifecycleState,
    Notification,
    Report,
    TrackingAction,
    TrackingResult,
    parse_timestamp,
)
from ..tracking.tracker import IssueStateTracker
from ..utils.config_manager import DailyRunConfig
from ..integrations.base import ChatClient, ReportSource, SourceIssueRef, TicketRef
from ..utils.logging_config import get_logger, log_exception
from .workflows import RemediationWorkflows, WorkflowResult

logger = get_logger(__name__)

LAST_RUN_MARKER = "daily_last_run"


@dataclass
class WorkflowOutcome:
    action: str
    state: LifecycleState
    record: IssueRecord
    tracking_action: TrackingAction
    classification: ClassificationResult | None = None
    tickets: list[TicketRef] = field(default_factory=list)
    source_issues: list[SourceIssueRef] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def partial_success(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "state": self.state.value,
            "record_id": self.record.id,
            "tracking_action": self.tracking_action.value,
            "classification": self.classification.to_dict() if self.classification else None,
            "tickets": [{"id": t.id, "url": t.url} for t in self.tickets],
            "source_issues": [{"number": i.number, "url": i.url} for i in self.source_issues],
            "notifications": [n.to_dict() for n in self.notifications],
            "partial_success": self.partial_success,
            "errors": list(self.errors),
        }


@dataclass
class DailySummary:
    run_at: datetime
    new_reports_processed: int = 0
    outcomes: Counter = field(default_factory=Counter)
    stuck_actions: Counter = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    hours_saved: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_at": self.run_at.isoformat(),
            "new_reports_processed": self.new_reports_processed,
            "outcomes": dict(self.outcomes),
            "stuck_issues_handled": sum(self.stuck_actions.values()),
            "stuck_actions": dict(self.stuck_actions),
            "errors": len(self.errors),
            "error_messages": list(self.errors),
            "hours_saved": self.hours_saved,
        }

    def render(self) -> str:
        lines = [
            f"*Bug router daily summary* ({self.run_at.date().isoformat()})",
            f"New reports processed: {self.new_reports_processed}",
        ]
        lines.extend(f"- {action}: {count}" for action, count in sorted(self.outcomes.items()))
        lines.append(f"Stuck issues handled: {sum(self.stuck_actions.values())}")
        lines.extend(f"- {action}: {count}" for action, count in sorted(self.stuck_actions.items()))
        lines.append(f"Errors: {len(self.errors)}")
        lines.append(f"Estimated time saved: ~{self.hours_saved:g} hours")
        return "\n".join(lines)


class WorkflowOrchestrator:
    """Classify, track, dispatch and notify for one report, plus the daily pass."""

    def __init__(
        self,
        classifier: IssueClassifier,
        tracker: IssueStateTracker,
        workflows: RemediationWorkflows,
        chat: ChatClient | None = None,
        report_source: ReportSource | None = None,
        daily: DailyRunConfig | None = None,
        summary_channel: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.classifier = classifier
        self.tracker = tracker
        self.workflows = workflows
        self.chat = chat
        self.report_source = report_source
        self.daily = daily or DailyRunConfig()
        self.summary_channel = summary_channel or self.daily.summary_channel
        self.sleep = sleep

    def process(self, report: Report, user_context: Mapping[str, Any] | None = None) -> WorkflowOutcome:
        logger.info("Processing report from %s in %s", report.author_id, report.channel_id)
        classification = self.classifier.classify(report.text, user_context, report.urgent)
        tracking = self.tracker.track_issue(report, classification)

        if not tracking.should_proceed:
            outcome = self._short_circuit(report, tracking, classification)
        else:
            outcome = self._remediate(tracking.record, classification, tracking.action)

        self._deliver(outcome)
        return outcome

    def _short_circuit(
        self,
        report: Report,
        tracking: TrackingResult,
        classification: ClassificationResult,
    ) -> WorkflowOutcome:
        record = tracking.record
        outcome = WorkflowOutcome(
            action=tracking.action.value,
            state=record.state,
            record=record,
            tracking_action=tracking.action,
            classification=classification,
        )
        link = record.references.ticket_url or record.references.pr_url or record.references.issue_url

        if tracking.action is TrackingAction.DUPLICATE_DETECTED and (
            record.state is LifecycleState.RESOLVED_WITH_EDUCATION
        ):
            # Same question asked again: answer it, without another ticket.
            response = self.workflows.responder.respond(report.text, classification.context)
            outcome.notifications.append(Notification(report.channel_id, response.text, report.message_ref))
        elif tracking.action is TrackingAction.DUPLICATE_DETECTED:
            text = "This issue is already being tracked"
            text += f": {link}" if link else f" (status: {record.state.value.replace('_', ' ')})."
            outcome.notifications.append(Notification(report.channel_id, text, report.message_ref))
        elif tracking.action is TrackingAction.REMINDER_SENT:
            outcome.notifications.append(Notification(
                report.channel_id,
                "A fix for this issue is already waiting for review; the team has been reminded.",
                report.message_ref,
            ))
            outcome.notifications.append(self._review_reminder(record))
        elif tracking.action is TrackingAction.ESCALATED:
            self._raise_ticket_priority(record, outcome.errors)
            outcome.notifications.append(Notification(
                report.channel_id,
                "This issue was reported before and is taking too long; it has been escalated.",
                report.message_ref,
            ))
            outcome.notifications.append(self._escalation_alert(record))
        logger.info("Report short-circuited: %s (issue %s)", tracking.action.value, record.id)
        return outcome

    def _remediate(
        self,
        record: IssueRecord,
        classification: ClassificationResult,
        tracking_action: TrackingAction,
    ) -> WorkflowOutcome:
        # The record is persisted before any collaborator is called.
        record = self.tracker.transition(
            record.id,
            LifecycleState.ANALYZED,
            note=classification.recommendation.action.value,
            classification=classification,
        )
        result = self.workflows.run(record, classification)
        record = self._write_back(record, result)
        outcome = WorkflowOutcome(
            action=result.action,
            state=record.state,
            record=record,
            tracking_action=tracking_action,
            classification=classification,
            tickets=list(result.tickets),
            source_issues=list(result.source_issues),
            notifications=list(result.notifications),
            errors=list(result.errors),
        )
        if outcome.partial_success:
            logger.warning("Workflow %s for issue %s partially failed: %s", result.action, record.id, result.errors)
        return outcome

    def _write_back(self, record: IssueRecord, result: WorkflowResult) -> IssueRecord:
        if result.state is record.state:
            if result.references:
                return self.tracker.attach(record.id, **result.references)
            return record
        return self.tracker.transition(record.id, result.state, note=result.action, **result.references)

    def _deliver(self, outcome: WorkflowOutcome) -> None:
        if self.chat is None:
            return
        for notification in outcome.notifications:
            try:
                self.chat.post_message(notification.channel, notification.text, notification.thread_ref)
            except CollaboratorError as exc:
                log_exception(logger, "Notification delivery failed", exc)
                outcome.errors.append(f"chat: {exc}")
            else:
                notification.delivered = True

    def _team_channel(self, record: IssueRecord) -> str:
        return self.workflows.settings.team_channel or record.channel_id

    def _review_reminder(self, record: IssueRecord) -> Notification:
        target = record.references.pr_url or record.references.issue_url or record.id
        return Notification(
            self._team_channel(record),
            f"Reminder: the fix for '{record.text[:80]}' has been waiting in "
            f"{record.state.value.replace('_', ' ')} since {record.updated_at.date().isoformat()}: {target}",
            audience="team",
        )

    def _escalation_alert(self, record: IssueRecord) -> Notification:
        on_call = record.references.escalated_by or self.workflows.settings.on_call
        return Notification(
            self._team_channel(record),
            f"<@{on_call}> escalated: '{record.text[:80]}' "
            f"({record.references.ticket_url or 'no ticket'}) has had no progress.",
            audience="on_call",
        )

    def _raise_ticket_priority(self, record: IssueRecord, errors: list[str]) -> None:
        ticketing = self.workflows.ticketing
        if ticketing is None or not record.references.ticket_id:
            return
        try:
            ticketing.update_ticket(record.references.ticket_id, {"priority": "urgent"})
        except CollaboratorError as exc:
            log_exception(logger, "Raising ticket priority failed", exc)
            errors.append(f"ticketing: {exc}")

    def handle_stuck(self, record: IssueRecord) -> WorkflowOutcome:
        """Apply the stuck-issue policy for one record found by the sweep."""

        state = record.state
        if state in (LifecycleState.PR_CREATED, LifecycleState.UNDER_REVIEW):
            outcome = WorkflowOutcome(TrackingAction.REMINDER_SENT.value, state, record, TrackingAction.REMINDER_SENT)
            outcome.notifications.append(self._review_reminder(record))
        elif state is LifecycleState.TICKET_CREATED:
            record = self.tracker.escalate(record.id, "ticket stuck without progress")
            outcome = WorkflowOutcome(TrackingAction.ESCALATED.value, record.state, record, TrackingAction.ESCALATED)
            self._raise_ticket_priority(record, outcome.errors)
            outcome.notifications.append(self._escalation_alert(record))
        elif state in (LifecycleState.NEW, LifecycleState.ANALYZED):
            if state is LifecycleState.ANALYZED:
                record = self.tracker.transition(record.id, LifecycleState.NEW, note="retry after stale analysis")
            classification = self.classifier.classify(record.text, None, record.urgent)
            outcome = self._remediate(record, classification, TrackingAction.RETRY_PROCESSING)
        else:
            raise ValueError(f"No stuck-issue policy for state {state.value}")

        self._deliver(outcome)
        return outcome

    def run_daily(self, now: datetime | None = None) -> DailySummary:
        """Process new reports since the last run, then the stuck-issue sweep."""

        now = now or self.tracker.clock()
        summary = DailySummary(run_at=now)
        since = self._last_run(now)
        logger.info("Starting daily pass (reports since %s)", since.isoformat())

        for report in self._collect_reports(since, summary):
            try:
                outcome = self.process(report)
            except Exception as exc:
                log_exception(logger, "Failed to process report", exc)
                summary.errors.append(f"report {report.message_ref or report.author_id}: {exc}")
                summary.outcomes["error"] += 1
            else:
                summary.outcomes[outcome.action] += 1
                summary.errors.extend(outcome.errors)
            summary.new_reports_processed += 1
            self.sleep(self.daily.rate_limit_pause_seconds)

        for record in self.tracker.get_stuck_issues(now, limit=self.daily.max_stuck_issues):
            try:
                outcome = self.handle_stuck(record)
            except Exception as exc:
                log_exception(logger, f"Failed to handle stuck issue {record.id}", exc)
                summary.errors.append(f"stuck {record.id}: {exc}")
                summary.stuck_actions["error"] += 1
            else:
                summary.stuck_actions[outcome.tracking_action.value] += 1
                summary.errors.extend(outcome.errors)
            self.sleep(self.daily.rate_limit_pause_seconds)

        summary.hours_saved = (
            summary.outcomes[TrackingAction.DUPLICATE_DETECTED.value] * self.daily.hours_saved_per_duplicate
            + summary.outcomes["education_response_provided"] * self.daily.hours_saved_per_education
        )
        self.tracker.store.set_marker(LAST_RUN_MARKER, now.isoformat())
        self._post_summary(summary)
        logger.info("Daily pass finished: %s", summary.to_dict())
        return summary

    def _last_run(self, now: datetime) -> datetime:
        marker = self.tracker.store.get_marker(LAST_RUN_MARKER)
        if marker:
            return parse_timestamp(marker)
        return now - timedelta(hours=self.daily.initial_lookback_hours)

    def _collect_reports(self, since: datetime, summary: DailySummary) -> list[Report]:
        if self.report_source is None:
            return []
        reports: list[Report] = []
        for channel in self.daily.report_channels:
            remaining = self.daily.max_new_reports - len(reports)
            if remaining <= 0:
                break
            try:
                reports.extend(self.report_source.fetch_reports(channel, since, remaining))
            except CollaboratorError as exc:
                log_exception(logger, f"Failed to read reports from {channel}", exc)
                summary.errors.append(f"report source {channel}: {exc}")
        return reports[: self.daily.max_new_reports]

    def _post_summary(self, summary: DailySummary) -> None:
        if self.chat is None or not self.summary_channel:
            return
        try:
            self.chat.post_message(self.summary_channel, summary.render())
        except CollaboratorError as exc:
            log_exception(logger, "Posting daily summary failed", exc)
            summary.errors.append(f"chat: {exc}")
