"""Team overrides and ticket revisions applied through chat reactions, and PR lifecycle updates."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from ..classification.classifier import ClassificationResult, IssueClassifier
from ..errors import CollaboratorError, InvalidTransitionError
from ..integrations.base import ThreadReader
from ..models import IssueRecord, LifecycleState, Notification, TrainingExample
from ..tracking.tracker import IssueStateTracker
from ..utils.logging_config import get_logger, log_exception
from .education import extract_title
from .workflows import ROUTING_TAGS, RemediationWorkflows, ticket_body, ticket_body_for_record

logger = get_logger(__name__)


class FeedbackAction(str, Enum):
    ESCALATE = "escalate"
    CONVERT_TO_SUPPORT = "convert_to_support"
    MARK_INVALID = "mark_invalid"
    MARK_DUPLICATE = "mark_duplicate"
    REVISE = "revise"
    EDIT_DESCRIPTION = "edit_description"
    RECLASSIFY = "reclassify"
    ADD_TRAINING_EXAMPLE = "add_training_example"


# Reaction names as Slack reports them.
REACTION_ACTIONS: dict[str, FeedbackAction] = {
    "rotating_light": FeedbackAction.ESCALATE,
    "raising_hand": FeedbackAction.CONVERT_TO_SUPPORT,
    "x": FeedbackAction.MARK_INVALID,
    "repeat": FeedbackAction.MARK_DUPLICATE,
    "wrench": FeedbackAction.REVISE,
    "memo": FeedbackAction.EDIT_DESCRIPTION,
    "label": FeedbackAction.RECLASSIFY,
    "robot_face": FeedbackAction.ADD_TRAINING_EXAMPLE,
}


_TARGET_STATES: dict[FeedbackAction, LifecycleState] = {
    FeedbackAction.ESCALATE: LifecycleState.ESCALATED,
    FeedbackAction.CONVERT_TO_SUPPORT: LifecycleState.CLOSED,
    FeedbackAction.MARK_INVALID: LifecycleState.INVALID,
    FeedbackAction.MARK_DUPLICATE: LifecycleState.DUPLICATE,
}

# Revisions rewrite the linked ticket and need an open issue.
_REVISIONS = frozenset({FeedbackAction.REVISE, FeedbackAction.EDIT_DESCRIPTION, FeedbackAction.RECLASSIFY})


class FeedbackStatus(str, Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    REJECTED = "rejected"


@dataclass
class FeedbackOutcome:
    status: FeedbackStatus
    action: FeedbackAction | None
    message: str
    record: IssueRecord | None = None
    notifications: list[Notification] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "action": self.action.value if self.action else None,
            "message": self.message,
            "record_id": self.record.id if self.record else None,
            "state": self.record.state.value if self.record else None,
            "notifications": [n.to_dict() for n in self.notifications],
            "errors": list(self.errors),
        }


class FeedbackHandler:
    """Applies reaction overrides and ticket revisions to tracked issues.

    Only authorized users may give feedback. An empty authorization list
    allows nobody, and a reaction on a message without a tracked issue
    yields a ``not_found`` outcome. Revisions read the reporter's
    clarification from the message thread unless one is passed in.
    """

    def __init__(
        self,
        tracker: IssueStateTracker,
        workflows: RemediationWorkflows,
        authorized_users: Sequence[str] = (),
        classifier: IssueClassifier | None = None,
        threads: ThreadReader | None = None,
    ) -> None:
        self.tracker = tracker
        self.workflows = workflows
        self.authorized_users = set(authorized_users)
        self.classifier = classifier or IssueClassifier()
        self.threads = threads

    def handle_reaction(
        self,
        reaction: str,
        message_ref: str,
        user: str,
        clarification: str | None = None,
    ) -> FeedbackOutcome | None:
        """Map a raw reaction name; unrelated reactions return None."""

        action = REACTION_ACTIONS.get(reaction.strip(":"))
        if action is None:
            return None
        return self.apply(action, message_ref, user, clarification)

    def apply(
        self,
        action: FeedbackAction,
        message_ref: str,
        user: str,
        clarification: str | None = None,
    ) -> FeedbackOutcome:
        if user not in self.authorized_users:
            logger.info("Ignoring %s feedback from unauthorized user %s", action.value, user)
            return FeedbackOutcome(FeedbackStatus.UNAUTHORIZED, action, f"{user} may not override routing")

        record = self.tracker.store.find_by_message(message_ref)
        if record is None:
            logger.warning("No tracked issue for message %s (%s)", message_ref, action.value)
            return FeedbackOutcome(FeedbackStatus.NOT_FOUND, action, f"No tracked issue for message {message_ref}")

        if action in _TARGET_STATES:
            target = _TARGET_STATES[action]
            if not record.state.can_transition_to(target):
                error = InvalidTransitionError(record.state.value, target.value)
                return FeedbackOutcome(FeedbackStatus.REJECTED, action, str(error), record)
            state_handler: Callable[[IssueRecord, str], FeedbackOutcome] = {
                FeedbackAction.ESCALATE: self._escalate,
                FeedbackAction.CONVERT_TO_SUPPORT: self._convert_to_support,
                FeedbackAction.MARK_INVALID: self._mark_invalid,
                FeedbackAction.MARK_DUPLICATE: self._mark_duplicate,
            }[action]
            outcome = state_handler(record, user)
        else:
            if action in _REVISIONS and record.is_terminal:
                message = f"Issue {record.id} is {record.state.value} and cannot be revised"
                return FeedbackOutcome(FeedbackStatus.REJECTED, action, message, record)
            context = self._clarification(record, message_ref, clarification)
            revision_handler: Callable[[IssueRecord, str, str], FeedbackOutcome] = {
                FeedbackAction.REVISE: self._revise,
                FeedbackAction.EDIT_DESCRIPTION: self._edit_description,
                FeedbackAction.RECLASSIFY: self._reclassify,
                FeedbackAction.ADD_TRAINING_EXAMPLE: self._add_training_example,
            }[action]
            outcome = revision_handler(record, user, context)

        if outcome.status is FeedbackStatus.APPLIED:
            logger.info("Applied %s feedback from %s to issue %s", action.value, user, record.id)
        return outcome

    def _clarification(self, record: IssueRecord, message_ref: str, given: str | None) -> str:
        if given is not None:
            return given.strip()
        if self.threads is None:
            return ""
        try:
            replies = self.threads.fetch_thread_replies(record.channel_id, message_ref)
        except CollaboratorError as exc:
            log_exception(logger, "Reading thread clarification failed", exc)
            return ""
        return "\n\n".join(reply.strip() for reply in replies if reply.strip())

    def _escalate(self, record: IssueRecord, user: str) -> FeedbackOutcome:
        outcome = FeedbackOutcome(FeedbackStatus.APPLIED, FeedbackAction.ESCALATE, "Escalated by team override")
        references: dict[str, object] = {}
        ticketing = self.workflows.ticketing
        if ticketing is not None:
            try:
                if record.references.ticket_id:
                    ticketing.update_ticket(record.references.ticket_id, {"priority": "urgent"})
                else:
                    ticket = ticketing.create_ticket(
                        f"[URGENT override] {record.text[:60]}",
                        ticket_body_for_record(record, f"Escalated by {user} via reaction"),
                        "urgent",
                        tags=["human-override", "emergency"],
                    )
                    references.update(ticket_id=ticket.id, ticket_url=ticket.url)
            except CollaboratorError as exc:
                log_exception(logger, "Escalation ticket update failed", exc)
                outcome.errors.append(f"ticketing: {exc}")

        outcome.record = self.tracker.transition(
            record.id,
            LifecycleState.ESCALATED,
            note=f"escalated by {user}",
            escalated_by=user,
            escalated_at=self.tracker.clock(),
            **references,
        )
        outcome.notifications.append(Notification(
            self.workflows.settings.team_channel or record.channel_id,
            f"<@{self.workflows.settings.on_call}> <@{user}> escalated '{record.text[:80]}' as a real bug.",
            audience="on_call",
        ))
        return outcome

    def _convert_to_support(self, record: IssueRecord, user: str) -> FeedbackOutcome:
        outcome = FeedbackOutcome(
            FeedbackStatus.APPLIED, FeedbackAction.CONVERT_TO_SUPPORT, "Converted to user support"
        )
        response = self.workflows.responder.respond(record.text)
        outcome.notifications.append(Notification(record.channel_id, response.text, record.message_ref))
        self._close_ticket(record, outcome, f"Converted to user support by {user}")
        outcome.record = self.tracker.transition(record.id, LifecycleState.CLOSED, note=f"support via {user}")
        return outcome

    def _mark_invalid(self, record: IssueRecord, user: str) -> FeedbackOutcome:
        outcome = FeedbackOutcome(FeedbackStatus.APPLIED, FeedbackAction.MARK_INVALID, "Marked invalid")
        self._close_ticket(record, outcome, f"Marked invalid by {user}")
        outcome.record = self.tracker.transition(record.id, LifecycleState.INVALID, note=f"invalid via {user}")
        return outcome

    def _mark_duplicate(self, record: IssueRecord, user: str) -> FeedbackOutcome:
        outcome = FeedbackOutcome(FeedbackStatus.APPLIED, FeedbackAction.MARK_DUPLICATE, "Marked duplicate")
        outcome.record = self.tracker.transition(record.id, LifecycleState.DUPLICATE, note=f"duplicate via {user}")
        return outcome

    def _reanalyze(self, record: IssueRecord, clarification: str) -> ClassificationResult:
        text = f"{record.text}\n\n{clarification}" if clarification else record.text
        return self.classifier.classify(text, None, record.urgent)

    def _update_ticket(self, record: IssueRecord, outcome: FeedbackOutcome, fields: dict[str, object]) -> bool:
        ticketing = self.workflows.ticketing
        if ticketing is None:
            outcome.errors.append("ticketing: not configured")
            return False
        try:
            ticketing.update_ticket(record.references.ticket_id, fields)
        except CollaboratorError as exc:
            log_exception(logger, f"Updating ticket {record.references.ticket_id} failed", exc)
            outcome.errors.append(f"ticketing: {exc}")
            return False
        return True

    def _revise(self, record: IssueRecord, user: str, clarification: str) -> FeedbackOutcome:
        classification = self._reanalyze(record, clarification)
        recommendation = classification.recommendation
        outcome = FeedbackOutcome(
            FeedbackStatus.APPLIED,
            FeedbackAction.REVISE,
            f"Re-analyzed as {recommendation.action.value}",
            record=self.tracker.attach(record.id, classification=classification),
        )
        if record.references.ticket_id:
            body = ticket_body(record, classification, f"Revised by {user}")
            if clarification:
                body += f"\n\n### Clarification\n\n{clarification}"
            self._update_ticket(record, outcome, {
                "name": f"[Revised] {extract_title(record.text)}",
                "description": body,
                "priority": recommendation.priority,
            })
        else:
            outcome.message += "; no linked ticket to update"
        outcome.notifications.append(Notification(
            record.channel_id,
            f"Ticket revised after clarification from <@{user}>: now routed as "
            f"{recommendation.action.value} ({classification.confidence:.0%} confidence).",
            record.message_ref,
        ))
        return outcome

    def _edit_description(self, record: IssueRecord, user: str, clarification: str) -> FeedbackOutcome:
        if not clarification:
            return FeedbackOutcome(
                FeedbackStatus.REJECTED, FeedbackAction.EDIT_DESCRIPTION, "No clarification found in the thread", record
            )
        if not record.references.ticket_id:
            return FeedbackOutcome(
                FeedbackStatus.REJECTED, FeedbackAction.EDIT_DESCRIPTION, f"Issue {record.id} has no linked ticket", record
            )
        outcome = FeedbackOutcome(
            FeedbackStatus.APPLIED, FeedbackAction.EDIT_DESCRIPTION, "Ticket description updated", record
        )
        body = ticket_body_for_record(record, f"Updated with context from {user}")
        self._update_ticket(record, outcome, {
            "description": f"{body}\n\n### Additional context\n\n{clarification}\n\nUpdated: {self.tracker.clock().isoformat()}",
        })
        return outcome

    def _reclassify(self, record: IssueRecord, user: str, clarification: str) -> FeedbackOutcome:
        previous = record.classification.action.value if record.classification else "unclassified"
        classification = self._reanalyze(record, clarification)
        recommendation = classification.recommendation
        outcome = FeedbackOutcome(
            FeedbackStatus.APPLIED,
            FeedbackAction.RECLASSIFY,
            f"Reclassified from {previous} to {recommendation.action.value}",
            record=self.tracker.attach(record.id, classification=classification),
        )
        if record.references.ticket_id:
            self._update_ticket(record, outcome, {
                "priority": recommendation.priority,
                "tags": list(ROUTING_TAGS[recommendation.action]),
            })
        outcome.notifications.append(Notification(
            self.workflows.settings.team_channel or record.channel_id,
            f"<@{user}> reclassified '{record.text[:80]}' from {previous} to {recommendation.action.value}.",
            audience="team",
        ))
        return outcome

    def _add_training_example(self, record: IssueRecord, user: str, clarification: str) -> FeedbackOutcome:
        example = TrainingExample.from_record(record, user, self.tracker.clock(), note=clarification)
        self.tracker.store.add_training_example(example)
        return FeedbackOutcome(
            FeedbackStatus.APPLIED, FeedbackAction.ADD_TRAINING_EXAMPLE, "Added to the training examples", record
        )

    def _close_ticket(self, record: IssueRecord, outcome: FeedbackOutcome, reason: str) -> None:
        ticketing = self.workflows.ticketing
        if ticketing is None or not record.references.ticket_id:
            return
        try:
            ticketing.update_ticket(record.references.ticket_id, {"status": "closed", "description": reason})
        except CollaboratorError as exc:
            log_exception(logger, "Closing ticket failed", exc)
            outcome.errors.append(f"ticketing: {exc}")


class PullRequestTracker:
    """Advances records as the coding agent's pull request moves through review."""

    def __init__(self, tracker: IssueStateTracker) -> None:
        self.tracker = tracker

    def record_code_generated(self, record_id: str) -> IssueRecord:
        return self.tracker.transition(record_id, LifecycleState.CODE_GENERATED, note="fix generated")

    def record_pull_request(self, record_id: str, number: int, url: str) -> IssueRecord:
        return self.tracker.transition(
            record_id, LifecycleState.PR_CREATED, note=f"PR #{number}", pr_number=number, pr_url=url
        )

    def advance_review(self, record_id: str, merged: bool | None = None) -> IssueRecord:
        """``None`` marks review started; True/False record merge or close."""

        if merged is None:
            return self.tracker.transition(record_id, LifecycleState.UNDER_REVIEW, note="review started")
        target = LifecycleState.MERGED if merged else LifecycleState.CLOSED
        return self.tracker.transition(record_id, target, note="pull request " + target.value)
