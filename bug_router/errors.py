"""Exception hierarchy for the bug router."""

from __future__ import annotations


class BugRouterError(RuntimeError):
    """Base class for every error raised by the bug router."""


class InvalidReportError(BugRouterError, ValueError):
    """Raised when an inbound report is missing text or required identity fields."""


class InvalidTransitionError(BugRouterError):
    """Raised when a lifecycle change is not allowed from the current state."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move issue from {current!r} to {target!r}")
        self.current = current
        self.target = target


class RecordNotFoundError(BugRouterError, LookupError):
    """Raised when an issue record id does not exist in the store."""


class ActiveRecordExistsError(BugRouterError):
    """Raised by a store when a fingerprint already has a non-terminal record."""

    def __init__(self, content_hash: str) -> None:
        super().__init__(f"An active issue record already exists for {content_hash}")
        self.content_hash = content_hash


class CollaboratorError(BugRouterError):
    """Raised by an external collaborator client when a call fails."""


class TicketingError(CollaboratorError):
    """Raised when the ticketing system rejects a request."""


class SourceControlError(CollaboratorError):
    """Raised when the source-control API rejects a request."""


class ChatError(CollaboratorError):
    """Raised when the chat API rejects a request."""
