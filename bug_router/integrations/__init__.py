from .base import (
    ChatClient,
    CodeGenerationHandoff,
    ReportSource,
    SecretProvider,
    SourceControlClient,
    SourceIssueRef,
    TicketingClient,
    TicketRef,
)

__all__ = [
    "ChatClient",
    "CodeGenerationHandoff",
    "ReportSource",
    "SecretProvider",
    "SourceControlClient",
    "SourceIssueRef",
    "TicketingClient",
    "TicketRef",
]
