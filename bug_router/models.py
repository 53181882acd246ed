"""Domain types shared by the classifier, the tracker and the orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from .errors import InvalidReportError, InvalidTransitionError

if TYPE_CHECKING:  # pragma: no cover
    from .classification.classifier import ClassificationResult


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Accept datetimes, ISO strings or epoch seconds and return an aware UTC datetime."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromtimestamp(float(text), tz=timezone.utc)
        except ValueError:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


_TRUE_FLAGS = frozenset({"1", "true", "yes", "on"})
_FALSE_FLAGS = frozenset({"", "0", "false", "no", "off"})


def parse_flag(value: Any) -> bool:
    """Interpret booleans carried as JSON values or strings ("false" is False)."""

    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_FLAGS:
            return True
        if text in _FALSE_FLAGS:
            return False
        raise ValueError(f"Unrecognized boolean value: {value!r}")
    return bool(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Category(str, Enum):
    """Root-cause categories scored by the classifier."""

    HUMAN_ERROR = "human_error"
    ADMIN_CONFIG = "admin_config"
    CODE_BUG = "code_bug"
    INFRASTRUCTURE = "infrastructure"


# Arg-max ties resolve to the earliest category in this order.
CATEGORY_ORDER: tuple[Category, ...] = (
    Category.HUMAN_ERROR,
    Category.ADMIN_CONFIG,
    Category.CODE_BUG,
    Category.INFRASTRUCTURE,
)


class RecommendedAction(str, Enum):
    EMERGENCY_HUMAN_REVIEW = "emergency-human-review"
    HUMAN_INVESTIGATION_REQUIRED = "human-investigation-required"
    USER_EDUCATION_RESPONSE = "user-education-response"
    ADMIN_INVESTIGATION = "admin-investigation"
    AI_CODE_ANALYSIS_APPROVED = "ai-code-analysis-approved"
    INFRASTRUCTURE_CHECK = "infrastructure-check"


@dataclass(frozen=True)
class Recommendation:
    action: RecommendedAction
    reason: str
    priority: str
    workflow: str

    def to_dict(self) -> dict[str, str]:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "priority": self.priority,
            "workflow": self.workflow,
        }


@dataclass(frozen=True)
class Report:
    """An inbound chat report. Immutable once received."""

    text: str
    author_id: str
    channel_id: str
    submitted_at: datetime
    urgent: bool = False
    message_ref: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not self.text.strip():
            raise InvalidReportError("Report text must not be empty")
        if not self.author_id:
            raise InvalidReportError("Report author id is required")
        if not self.channel_id:
            raise InvalidReportError("Report channel id is required")
        if self.submitted_at.tzinfo is None:
            object.__setattr__(self, "submitted_at", self.submitted_at.replace(tzinfo=timezone.utc))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Report":
        """Build a report from a normalized inbound event mapping."""

        try:
            submitted = payload.get("timestamp") or payload.get("submitted_at")
            submitted_at = parse_timestamp(submitted) if submitted is not None else utc_now()
        except ValueError as exc:
            raise InvalidReportError(f"Invalid report timestamp: {exc}") from exc
        try:
            urgent = parse_flag(payload.get("urgent", False))
        except ValueError as exc:
            raise InvalidReportError(f"Invalid urgency flag: {exc}") from exc
        return cls(
            text=str(payload.get("text") or ""),
            author_id=str(payload.get("author_id") or payload.get("user") or ""),
            channel_id=str(payload.get("channel_id") or payload.get("channel") or ""),
            submitted_at=submitted_at,
            urgent=urgent,
            message_ref=payload.get("message_ref") or payload.get("ts"),
        )


class LifecycleState(str, Enum):
    NEW = "new"
    ANALYZED = "analyzed"
    TICKET_CREATED = "ticket_created"
    CODE_GENERATED = "code_generated"
    PR_CREATED = "pr_created"
    UNDER_REVIEW = "under_review"
    MERGED = "merged"
    CLOSED = "closed"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    ESCALATED = "escalated"
    RESOLVED_WITH_EDUCATION = "resolved_with_education"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    def can_transition_to(self, target: "LifecycleState") -> bool:
        """Return True when the lifecycle allows moving from this state to ``target``."""

        if self.is_terminal or target is self:
            return False
        if self is LifecycleState.ANALYZED and target is LifecycleState.NEW:
            return True
        if target in SIDE_STATES or target is LifecycleState.CLOSED:
            return True
        # Answered how-to questions stay matchable but never rejoin the defect line.
        if target is LifecycleState.RESOLVED_WITH_EDUCATION:
            return self is LifecycleState.ANALYZED
        if self is LifecycleState.RESOLVED_WITH_EDUCATION:
            return False
        if target is LifecycleState.MERGED:
            return self in (LifecycleState.PR_CREATED, LifecycleState.UNDER_REVIEW)
        if self in SIDE_STATES:
            # Side states may pick the main line back up once a ticket exists.
            return _MAIN_LINE.index(target) >= _MAIN_LINE.index(LifecycleState.TICKET_CREATED)
        return _MAIN_LINE.index(target) > _MAIN_LINE.index(self)


TERMINAL_STATES = frozenset({LifecycleState.MERGED, LifecycleState.CLOSED, LifecycleState.INVALID})
SIDE_STATES = frozenset({LifecycleState.DUPLICATE, LifecycleState.INVALID, LifecycleState.ESCALATED})
_MAIN_LINE = (
    LifecycleState.NEW,
    LifecycleState.ANALYZED,
    LifecycleState.TICKET_CREATED,
    LifecycleState.CODE_GENERATED,
    LifecycleState.PR_CREATED,
    LifecycleState.UNDER_REVIEW,
)


@dataclass(frozen=True)
class Fingerprint:
    """Identity of a report: content hash, author hash and time bucket."""

    content_hash: str
    author_hash: str
    time_bucket: str

    @property
    def combined_key(self) -> str:
        return f"{self.content_hash}_{self.author_hash}_{self.time_bucket}"

    @property
    def content_bucket_key(self) -> str:
        return f"{self.content_hash}_{self.time_bucket}"

    def lookup_keys(self) -> tuple[str, str, str]:
        """Keys tried in order when looking for a prior record."""

        return (self.combined_key, self.content_hash, self.content_bucket_key)

    def to_dict(self) -> dict[str, str]:
        return {
            "content_hash": self.content_hash,
            "author_hash": self.author_hash,
            "time_bucket": self.time_bucket,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Fingerprint":
        return cls(
            content_hash=str(data["content_hash"]),
            author_hash=str(data["author_hash"]),
            time_bucket=str(data["time_bucket"]),
        )


@dataclass(frozen=True)
class ClassificationSnapshot:
    """The part of a classification kept on the issue record."""

    classification_id: str
    action: RecommendedAction
    confidence: float
    probabilities: Mapping[str, float]

    @classmethod
    def from_result(cls, result: "ClassificationResult") -> "ClassificationSnapshot":
        return cls(
            classification_id=result.classification_id,
            action=result.recommendation.action,
            confidence=result.confidence,
            probabilities={category.value: value for category, value in result.probabilities.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "classification_id": self.classification_id,
            "action": self.action.value,
            "confidence": self.confidence,
            "probabilities": dict(self.probabilities),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClassificationSnapshot":
        return cls(
            classification_id=str(data["classification_id"]),
            action=RecommendedAction(data["action"]),
            confidence=float(data["confidence"]),
            probabilities={str(k): float(v) for k, v in data.get("probabilities", {}).items()},
        )


@dataclass
class ExternalReferences:
    """Links from an issue record to artifacts in other systems."""

    ticket_id: str | None = None
    ticket_url: str | None = None
    issue_number: int | None = None
    issue_url: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    escalated_by: str | None = None
    escalated_at: datetime | None = None

    def update(self, **values: Any) -> None:
        known = {f.name for f in fields(self)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown external reference fields: {', '.join(sorted(unknown))}")
        for name, value in values.items():
            if value is not None:
                setattr(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        data["escalated_at"] = _iso(self.escalated_at)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExternalReferences":
        values = dict(data)
        values["escalated_at"] = _from_iso(values.get("escalated_at"))
        return cls(**values)


@dataclass(frozen=True)
class StateChange:
    state: LifecycleState
    at: datetime
    note: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"state": self.state.value, "at": self.at.isoformat(), "note": self.note}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateChange":
        return cls(state=LifecycleState(data["state"]), at=datetime.fromisoformat(data["at"]), note=data.get("note", ""))


@dataclass
class IssueRecord:
    """Lifecycle record for one unique issue."""

    id: str
    fingerprint: Fingerprint
    author_id: str
    channel_id: str
    text: str
    reported_at: datetime
    state: LifecycleState
    created_at: datetime
    updated_at: datetime
    message_ref: str | None = None
    urgent: bool = False
    classification: ClassificationSnapshot | None = None
    references: ExternalReferences = field(default_factory=ExternalReferences)
    duplicate_count: int = 0
    last_reported_at: datetime | None = None
    additional_reporters: list[str] = field(default_factory=list)
    history: list[StateChange] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        report: Report,
        fingerprint: Fingerprint,
        now: datetime,
        classification: ClassificationSnapshot | None = None,
    ) -> "IssueRecord":
        return cls(
            id=uuid.uuid4().hex,
            fingerprint=fingerprint,
            author_id=report.author_id,
            channel_id=report.channel_id,
            text=report.text,
            reported_at=report.submitted_at,
            state=LifecycleState.NEW,
            created_at=now,
            updated_at=now,
            message_ref=report.message_ref,
            urgent=report.urgent,
            classification=classification,
            history=[StateChange(LifecycleState.NEW, now, "created")],
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, target: LifecycleState, at: datetime, note: str = "") -> None:
        """Move to ``target`` or raise :class:`InvalidTransitionError`."""

        if not self.state.can_transition_to(target):
            raise InvalidTransitionError(self.state.value, target.value)
        self.state = target
        self.updated_at = at
        self.history.append(StateChange(target, at, note))

    def annotate_duplicate(self, reporter: str, at: datetime) -> None:
        """Record another sighting without touching the lifecycle state."""

        self.duplicate_count += 1
        self.last_reported_at = at
        if reporter != self.author_id and reporter not in self.additional_reporters:
            self.additional_reporters.append(reporter)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fingerprint": self.fingerprint.to_dict(),
            "author_id": self.author_id,
            "channel_id": self.channel_id,
            "text": self.text,
            "reported_at": self.reported_at.isoformat(),
            "message_ref": self.message_ref,
            "urgent": self.urgent,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "classification": self.classification.to_dict() if self.classification else None,
            "references": self.references.to_dict(),
            "duplicate_count": self.duplicate_count,
            "last_reported_at": _iso(self.last_reported_at),
            "additional_reporters": list(self.additional_reporters),
            "history": [change.to_dict() for change in self.history],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IssueRecord":
        classification = data.get("classification")
        return cls(
            id=str(data["id"]),
            fingerprint=Fingerprint.from_dict(data["fingerprint"]),
            author_id=str(data["author_id"]),
            channel_id=str(data["channel_id"]),
            text=str(data["text"]),
            reported_at=datetime.fromisoformat(data["reported_at"]),
            message_ref=data.get("message_ref"),
            urgent=bool(data.get("urgent", False)),
            state=LifecycleState(data["state"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            classification=ClassificationSnapshot.from_dict(classification) if classification else None,
            references=ExternalReferences.from_dict(data.get("references") or {}),
            duplicate_count=int(data.get("duplicate_count", 0)),
            last_reported_at=_from_iso(data.get("last_reported_at")),
            additional_reporters=list(data.get("additional_reporters", [])),
            history=[StateChange.from_dict(item) for item in data.get("history", [])],
        )


class TrackingAction(str, Enum):
    NEW_ISSUE_CREATED = "new_issue_created"
    DUPLICATE_DETECTED = "duplicate_detected"
    REMINDER_SENT = "reminder_sent"
    ESCALATED = "escalated"
    RETRY_PROCESSING = "retry_processing"


@dataclass(frozen=True)
class TrackingResult:
    should_proceed: bool
    action: TrackingAction
    record: IssueRecord
    message: str = ""


@dataclass
class Notification:
    """A chat message the orchestrator wants delivered."""

    channel: str
    text: str
    thread_ref: str | None = None
    audience: str = "reporter"
    delivered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "text": self.text,
            "thread_ref": self.thread_ref,
            "audience": self.audience,
            "delivered": self.delivered,
        }


@dataclass(frozen=True)
class TrainingExample:
    """A report the team flagged as worth learning from, with how it was routed."""

    record_id: str
    text: str
    routed_action: str | None
    confidence: float | None
    added_by: str
    added_at: datetime
    note: str = ""

    @classmethod
    def from_record(cls, record: IssueRecord, added_by: str, added_at: datetime, note: str = "") -> "TrainingExample":
        snapshot = record.classification
        return cls(
            record_id=record.id,
            text=record.text,
            routed_action=snapshot.action.value if snapshot else None,
            confidence=snapshot.confidence if snapshot else None,
            added_by=added_by,
            added_at=added_at,
            note=note,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "text": self.text,
            "routed_action": self.routed_action,
            "confidence": self.confidence,
            "added_by": self.added_by,
            "added_at": self.added_at.isoformat(),
            "note": self.note,
        }
