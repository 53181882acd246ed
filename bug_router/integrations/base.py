"""Interfaces for the external systems the router talks to."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

from ..models import IssueRecord, Report

if TYPE_CHECKING:  # pragma: no cover
    from ..classification.classifier import ClassificationResult


@dataclass(frozen=True)
class TicketRef:
    id: str
    url: str


@dataclass(frozen=True)
class SourceIssueRef:
    number: int
    url: str


class TicketingClient(Protocol):
    def create_ticket(
        self,
        title: str,
        body: str,
        priority: str,
        assignees: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> TicketRef: ...

    def update_ticket(self, ticket_id: str, fields: Mapping[str, Any]) -> None: ...


class SourceControlClient(Protocol):
    def create_issue(
        self,
        repository: str,
        title: str,
        body: str,
        labels: Sequence[str] = (),
    ) -> SourceIssueRef: ...


class ChatClient(Protocol):
    def post_message(self, channel: str, text: str, thread_ref: str | None = None) -> None: ...


class ReportSource(Protocol):
    def fetch_reports(self, channel: str, since: datetime, limit: int) -> list[Report]: ...


class SecretProvider(Protocol):
    def get_secret(self, name: str) -> str | None: ...


class CodeGenerationHandoff(Protocol):
    def request_fix(
        self,
        record: IssueRecord,
        ticket: TicketRef | None,
        classification: "ClassificationResult",
    ) -> SourceIssueRef: ...


class ThreadReader(Protocol):
    def fetch_thread_replies(self, channel: str, thread_ref: str) -> list[str]: ...
