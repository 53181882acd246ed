"""Issue lifecycle tracking and duplicate handling."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from ..errors import ActiveRecordExistsError, RecordNotFoundError
from ..models import (
    ClassificationSnapshot,
    IssueRecord,
    LifecycleState,
    Report,
    TrackingAction,
    TrackingResult,
    utc_now,
)
from ..utils.config_manager import TrackingConfig
from ..utils.logging_config import get_logger
from .fingerprint import FingerprintEngine
from .store import IssueStore

if TYPE_CHECKING:  # pragma: no cover
    from ..classification.classifier import ClassificationResult

logger = get_logger(__name__)


class IssueStateTracker:
    """Owns issue records: duplicate lookup, state policies and stuck sweeps.

    Lookup-then-create for one content hash runs under a striped lock, and
    the store refuses a second active record for the same content hash, so
    concurrent calls for the same report never create two records.
    """

    def __init__(
        self,
        store: IssueStore,
        config: TrackingConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        fingerprints: FingerprintEngine | None = None,
    ) -> None:
        self.store = store
        self.config = config or TrackingConfig()
        self.clock = clock
        self.fingerprints = fingerprints or FingerprintEngine(self.config.bucket_days)
        self._locks = [threading.RLock() for _ in range(self.config.lock_stripes)]

    @property
    def thresholds(self) -> dict[LifecycleState, timedelta]:
        return {
            LifecycleState.NEW: timedelta(days=self.config.new_days),
            LifecycleState.ANALYZED: timedelta(days=self.config.analyzed_days),
            LifecycleState.TICKET_CREATED: timedelta(days=self.config.ticket_created_days),
            LifecycleState.PR_CREATED: timedelta(days=self.config.pr_created_days),
            LifecycleState.UNDER_REVIEW: timedelta(days=self.config.under_review_days),
        }

    def _lock_for(self, content_hash: str) -> threading.RLock:
        return self._locks[int(content_hash, 16) % len(self._locks)]

    def track_issue(
        self,
        report: Report,
        classification: "ClassificationResult | None" = None,
    ) -> TrackingResult:
        fingerprint = self.fingerprints.fingerprint(report)
        snapshot = ClassificationSnapshot.from_result(classification) if classification else None

        with self._lock_for(fingerprint.content_hash):
            now = self.clock()
            existing = self.store.find_active(fingerprint)
            if existing is None:
                record = IssueRecord.create(report, fingerprint, now, snapshot)
                try:
                    self.store.insert(record)
                except ActiveRecordExistsError:
                    # Another process won the race; treat its record as the match.
                    existing = self.store.find_active(fingerprint)
                    if existing is None:
                        raise
                else:
                    logger.info("Tracking new issue %s (%s)", record.id, fingerprint.combined_key)
                    return TrackingResult(
                        should_proceed=True,
                        action=TrackingAction.NEW_ISSUE_CREATED,
                        record=record,
                        message="New issue recorded",
                    )

            return self._handle_existing(existing, report, now)

    def _handle_existing(self, record: IssueRecord, report: Report, now: datetime) -> TrackingResult:
        elapsed = now - record.updated_at
        thresholds = self.thresholds
        state = record.state
        logger.info(
            "Report matches issue %s in state %s (%.1f days since update)",
            record.id,
            state.value,
            elapsed.total_seconds() / 86400,
        )

        if state in (LifecycleState.PR_CREATED, LifecycleState.UNDER_REVIEW) and elapsed >= thresholds[state]:
            record.annotate_duplicate(report.author_id, report.submitted_at)
            self.store.upsert(record)
            return TrackingResult(
                should_proceed=False,
                action=TrackingAction.REMINDER_SENT,
                record=record,
                message=f"Fix for this issue has been waiting in {state.value} for {elapsed.days} days",
            )

        if state is LifecycleState.TICKET_CREATED and elapsed >= thresholds[state]:
            record.annotate_duplicate(report.author_id, report.submitted_at)
            self._escalate(record, now, "reported again after ticket went stale")
            return TrackingResult(
                should_proceed=False,
                action=TrackingAction.ESCALATED,
                record=record,
                message=f"Issue escalated to {self.config.on_call}",
            )

        if state is LifecycleState.NEW and elapsed >= thresholds[state]:
            # Recorded but never routed, e.g. the process died before analysis.
            return TrackingResult(
                should_proceed=True,
                action=TrackingAction.RETRY_PROCESSING,
                record=record,
                message="Issue was recorded but never routed; processing again",
            )

        if state is LifecycleState.ANALYZED and elapsed >= thresholds[state]:
            record.transition(LifecycleState.NEW, now, "retry after stale analysis")
            self.store.upsert(record)
            return TrackingResult(
                should_proceed=True,
                action=TrackingAction.RETRY_PROCESSING,
                record=record,
                message="Previous analysis went stale; processing again",
            )

        record.annotate_duplicate(report.author_id, report.submitted_at)
        self.store.upsert(record)
        return TrackingResult(
            should_proceed=False,
            action=TrackingAction.DUPLICATE_DETECTED,
            record=record,
            message=f"Already tracked as issue {record.id} ({state.value})",
        )

    def _escalate(self, record: IssueRecord, now: datetime, note: str) -> None:
        record.transition(LifecycleState.ESCALATED, now, note)
        record.references.update(escalated_by=self.config.on_call, escalated_at=now)
        self.store.upsert(record)
        logger.warning("Escalated issue %s to %s", record.id, self.config.on_call)

    def _update(self, record_id: str, change: Callable[[IssueRecord], None]) -> IssueRecord:
        """Re-read, change and persist a record under its content-hash lock."""

        content_hash = self.get(record_id).fingerprint.content_hash
        with self._lock_for(content_hash):
            record = self.get(record_id)
            change(record)
            self.store.upsert(record)
        return record

    def escalate(self, record_id: str, note: str = "") -> IssueRecord:
        def change(record: IssueRecord) -> None:
            now = self.clock()
            record.transition(LifecycleState.ESCALATED, now, note or "escalated")
            record.references.update(escalated_by=self.config.on_call, escalated_at=now)

        record = self._update(record_id, change)
        logger.warning("Escalated issue %s to %s", record.id, self.config.on_call)
        return record

    def get(self, record_id: str) -> IssueRecord:
        record = self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"No issue record with id {record_id}")
        return record

    def get_stuck_issues(self, now: datetime | None = None, limit: int | None = None) -> list[IssueRecord]:
        return self.store.list_stuck(now or self.clock(), self.thresholds, limit)

    def transition(
        self,
        record_id: str,
        state: LifecycleState,
        note: str = "",
        classification: "ClassificationResult | None" = None,
        **references: Any,
    ) -> IssueRecord:
        """Apply a validated state change and persist it."""

        def change(record: IssueRecord) -> None:
            record.transition(state, self.clock(), note)
            if classification is not None:
                record.classification = ClassificationSnapshot.from_result(classification)
            if references:
                record.references.update(**references)

        record = self._update(record_id, change)
        logger.info("Issue %s moved to %s", record.id, state.value)
        return record

    def attach(
        self,
        record_id: str,
        classification: "ClassificationResult | None" = None,
        **references: Any,
    ) -> IssueRecord:
        """Store external references or a newer classification without changing state."""

        def change(record: IssueRecord) -> None:
            if classification is not None:
                record.classification = ClassificationSnapshot.from_result(classification)
            if references:
                record.references.update(**references)

        return self._update(record_id, change)
