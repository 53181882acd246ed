"""The five mutually exclusive remediation workflows.

Each workflow creates its artifacts through the collaborator clients and
returns a :class:`WorkflowResult` naming the lifecycle state the record
should move to. Collaborator failures are collected, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

from ..classification.classifier import ClassificationResult
from ..errors import CollaboratorError
from ..models import IssueRecord, LifecycleState, Notification, RecommendedAction, utc_now
from ..utils.logging_config import get_logger, log_exception
from ..integrations.base import CodeGenerationHandoff, SourceIssueRef, TicketingClient, TicketRef
from .education import EducationResponder, extract_title

logger = get_logger(__name__)


@dataclass
class WorkflowResult:
    action: str
    state: LifecycleState
    tickets: list[TicketRef] = field(default_factory=list)
    source_issues: list[SourceIssueRef] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    references: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def partial_success(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class WorkflowSettings:
    on_call: str = "merekahira"
    team_channel: str | None = None
    assignees: Sequence[str] = ()


ROUTING_TAGS: dict[RecommendedAction, tuple[str, ...]] = {
    RecommendedAction.AI_CODE_ANALYSIS_APPROVED: ("ai-routed", "bug", "ai-code-generation"),
    RecommendedAction.USER_EDUCATION_RESPONSE: ("user-education", "not-a-bug", "knowledge-base"),
    RecommendedAction.HUMAN_INVESTIGATION_REQUIRED: ("ai-routed", "triage", "needs-investigation"),
    RecommendedAction.INFRASTRUCTURE_CHECK: ("ai-routed", "triage", "needs-investigation", "infrastructure"),
    RecommendedAction.ADMIN_INVESTIGATION: ("ai-routed", "admin-review", "configuration"),
    RecommendedAction.EMERGENCY_HUMAN_REVIEW: ("ai-routed", "emergency", "needs-investigation"),
}


def ticket_body(record: IssueRecord, classification: ClassificationResult, heading: str) -> str:
    top = classification.top_category
    summary = (
        f"Classified as {top.value.replace('_', ' ')} "
        f"({classification.probabilities[top]:.0f}% blended probability), "
        f"confidence {classification.confidence:.0%}. "
        f"Recommendation: {classification.recommendation.action.value}."
    )
    lines = [
        f"## {heading}",
        "",
        summary,
        "",
        "### Original report",
        "",
        record.text,
        "",
        "### Analysis",
        "",
    ]
    lines.extend(f"- {reason}" for reason in classification.reasoning)
    lines.extend([
        "",
        "### Steps to reproduce",
        "",
        "[To be filled by assignee based on investigation]",
        "",
        "---",
        f"Reported by: <@{record.author_id}> in <#{record.channel_id}>",
        f"Reported at: {record.reported_at.isoformat()}",
        f"Tracking id: {record.id}",
    ])
    return "\n".join(lines)


def ticket_body_for_record(record: IssueRecord, heading: str) -> str:
    """Ticket body for overrides where no fresh classification exists."""

    lines = [f"## {heading}", "", "### Original report", "", record.text, ""]
    if record.classification is not None:
        lines.append(
            f"Last routed as {record.classification.action.value} "
            f"({record.classification.confidence:.0%} confidence)."
        )
    lines.extend([
        "---",
        f"Reported by: <@{record.author_id}> in <#{record.channel_id}>",
        f"Tracking id: {record.id}",
    ])
    return "\n".join(lines)


class RemediationWorkflows:
    """Dispatch table from recommended action to workflow."""

    def __init__(
        self,
        ticketing: TicketingClient | None = None,
        handoff: CodeGenerationHandoff | None = None,
        responder: EducationResponder | None = None,
        settings: WorkflowSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ticketing = ticketing
        self.handoff = handoff
        self.responder = responder or EducationResponder()
        self.settings = settings or WorkflowSettings()
        self.clock = clock
        self._dispatch: dict[RecommendedAction, Callable[..., WorkflowResult]] = {
            RecommendedAction.AI_CODE_ANALYSIS_APPROVED: self.ai_code_generation,
            RecommendedAction.USER_EDUCATION_RESPONSE: self.education_response,
            RecommendedAction.HUMAN_INVESTIGATION_REQUIRED: self.human_review,
            RecommendedAction.INFRASTRUCTURE_CHECK: self.human_review,
            RecommendedAction.ADMIN_INVESTIGATION: self.admin_review,
            RecommendedAction.EMERGENCY_HUMAN_REVIEW: self.emergency_review,
        }

    def run(self, record: IssueRecord, classification: ClassificationResult) -> WorkflowResult:
        workflow = self._dispatch[classification.recommendation.action]
        logger.info("Running %s for issue %s", workflow.__name__, record.id)
        return workflow(record, classification)

    def _team_channel(self, record: IssueRecord) -> str:
        return self.settings.team_channel or record.channel_id

    def _create_ticket(
        self,
        result: WorkflowResult,
        title: str,
        body: str,
        priority: str,
        tags: Sequence[str],
        assignees: Sequence[str] | None = None,
    ) -> TicketRef | None:
        if self.ticketing is None:
            result.errors.append("ticketing: not configured")
            return None
        try:
            ticket = self.ticketing.create_ticket(
                title,
                body,
                priority,
                assignees=list(self.settings.assignees if assignees is None else assignees),
                tags=list(tags),
            )
        except CollaboratorError as exc:
            log_exception(logger, "Ticket creation failed", exc)
            result.errors.append(f"ticketing: {exc}")
            return None
        result.tickets.append(ticket)
        result.references.update(ticket_id=ticket.id, ticket_url=ticket.url)
        return ticket

    def ai_code_generation(self, record: IssueRecord, classification: ClassificationResult) -> WorkflowResult:
        result = WorkflowResult("ai_code_generation_started", LifecycleState.ANALYZED)
        ticket = self._create_ticket(
            result,
            f"[Bug] {extract_title(record.text)}",
            ticket_body(record, classification, "Defect confirmed for AI code analysis"),
            "high",
            ROUTING_TAGS[RecommendedAction.AI_CODE_ANALYSIS_APPROVED],
        )

        if self.handoff is None:
            result.errors.append("code generation: not configured")
        else:
            try:
                issue = self.handoff.request_fix(record, ticket, classification)
            except CollaboratorError as exc:
                log_exception(logger, "Code generation hand-off failed", exc)
                result.errors.append(f"code generation: {exc}")
            else:
                result.source_issues.append(issue)
                result.references.update(issue_number=issue.number, issue_url=issue.url)

        if result.tickets or result.source_issues:
            result.state = LifecycleState.TICKET_CREATED
        link = ticket.url if ticket else "ticket pending"
        result.notifications.append(Notification(
            record.channel_id,
            f"Thanks! This looks like a bug. It has been logged ({link}) and an automated fix is being prepared.",
            record.message_ref,
        ))
        return result

    def education_response(self, record: IssueRecord, classification: ClassificationResult) -> WorkflowResult:
        # The reply is the remediation. The record stays matchable so repeats are not answered twice.
        result = WorkflowResult("education_response_provided", LifecycleState.RESOLVED_WITH_EDUCATION)
        response = self.responder.respond(record.text, classification.context)
        result.notifications.append(Notification(record.channel_id, response.text, record.message_ref))
        self._create_ticket(
            result,
            f"User Education Request: {extract_title(record.text)}",
            ticket_body(record, classification, "User education response provided")
            + f"\n\n### Response sent ({response.topic})\n\n{response.text}",
            "low",
            ROUTING_TAGS[RecommendedAction.USER_EDUCATION_RESPONSE],
        )
        result.notifications.append(Notification(
            self._team_channel(record),
            f"Answered a how-to question from <@{record.author_id}> with the {response.topic} guide.",
            audience="team",
        ))
        return result

    def human_review(self, record: IssueRecord, classification: ClassificationResult) -> WorkflowResult:
        infrastructure = classification.recommendation.action is RecommendedAction.INFRASTRUCTURE_CHECK
        result = WorkflowResult(
            "infrastructure_check_requested" if infrastructure else "human_review_requested",
            LifecycleState.ANALYZED,
        )
        tags = ROUTING_TAGS[classification.recommendation.action]
        ticket = self._create_ticket(
            result,
            f"[Triage] {extract_title(record.text)}",
            ticket_body(record, classification, "Needs human triage"),
            classification.recommendation.priority,
            tags,
        )
        if ticket is not None:
            result.state = LifecycleState.TICKET_CREATED
        result.notifications.append(Notification(
            self._team_channel(record),
            f"Report from <@{record.author_id}> needs human triage "
            f"({classification.confidence:.0%} confidence): {ticket.url if ticket else 'ticket creation failed'}",
            audience="team",
        ))
        return result

    def admin_review(self, record: IssueRecord, classification: ClassificationResult) -> WorkflowResult:
        result = WorkflowResult("admin_investigation_requested", LifecycleState.ANALYZED)
        ticket = self._create_ticket(
            result,
            f"[Admin] {extract_title(record.text)}",
            ticket_body(record, classification, "Configuration or administrative issue suspected"),
            "high",
            ROUTING_TAGS[RecommendedAction.ADMIN_INVESTIGATION],
        )
        if ticket is not None:
            result.state = LifecycleState.TICKET_CREATED
        result.notifications.append(Notification(
            self._team_channel(record),
            f"Possible configuration issue reported by <@{record.author_id}>: "
            f"{ticket.url if ticket else 'ticket creation failed'}",
            audience="team",
        ))
        return result

    def emergency_review(self, record: IssueRecord, classification: ClassificationResult) -> WorkflowResult:
        on_call = self.settings.on_call
        result = WorkflowResult("emergency_review_requested", LifecycleState.ESCALATED)
        ticket = self._create_ticket(
            result,
            f"[URGENT] {extract_title(record.text)}",
            ticket_body(record, classification, "Emergency review requested"),
            "urgent",
            ROUTING_TAGS[RecommendedAction.EMERGENCY_HUMAN_REVIEW],
        )
        result.references.update(escalated_by=on_call, escalated_at=self.clock())
        result.notifications.append(Notification(
            self._team_channel(record),
            f"<@{on_call}> urgent report from <@{record.author_id}> needs review now: "
            f"{ticket.url if ticket else record.text[:200]}",
            audience="on_call",
        ))
        result.notifications.append(Notification(
            record.channel_id,
            "Thanks for flagging this. The on-call engineer has been paged.",
            record.message_ref,
        ))
        return result
