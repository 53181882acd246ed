"""GitHub issue creation and the coding-agent hand-off built on it."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Sequence
from urllib import error, request

from ...errors import SourceControlError
from ...models import IssueRecord
from ...utils.logging_config import get_logger
from ..base import SourceIssueRef, TicketRef

if TYPE_CHECKING:  # pragma: no cover
    from ...classification.classifier import ClassificationResult

logger = get_logger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
DEFAULT_HANDOFF_LABEL = "ready-for-copilot"


class GitHubIssueError(SourceControlError):
    """Raised when the GitHub API returns an error."""


@dataclass(frozen=True)
class IssueOutcome:
    """Represents the response from a successful issue creation."""

    number: int
    url: str
    html_url: str

    @classmethod
    def from_api_payload(cls, payload: Mapping[str, object]) -> "IssueOutcome":
        try:
            number = int(payload["number"])  # type: ignore[arg-type]
            url = str(payload["url"])
            html_url = str(payload.get("html_url", url))
        except (KeyError, TypeError, ValueError) as exc:
            raise GitHubIssueError("Unexpected GitHub response payload") from exc
        return cls(number=number, url=url, html_url=html_url)


def normalize_repository(repository: str | None) -> tuple[str, str]:
    """Split an ``owner/repo`` string into its two components."""

    if not repository:
        raise GitHubIssueError("Repository must be provided as 'owner/repo'.")
    owner, sep, name = repository.partition("/")
    if not sep or not owner or not name:
        raise GitHubIssueError(f"Invalid repository format: {repository!r}")
    return owner, name


def create_issue(
    *,
    token: str,
    repository: str,
    title: str,
    body: str,
    api_url: str = DEFAULT_API_URL,
    labels: Sequence[str] | None = None,
    assignees: Sequence[str] | None = None,
    timeout: float = 30.0,
) -> IssueOutcome:
    """Create a GitHub issue and return the result."""

    owner, name = normalize_repository(repository)
    payload: dict[str, object] = {"title": title, "body": body}
    if labels:
        payload["labels"] = list(labels)
    if assignees:
        payload["assignees"] = list(assignees)

    url = f"{api_url.rstrip('/')}/repos/{owner}/{name}/issues"
    req = request.Request(url, data=json.dumps(payload).encode("utf-8"), method="POST")
    req.add_header("Authorization", f"Bearer {token}")
    req.add_header("Accept", "application/vnd.github+json")
    req.add_header("X-GitHub-Api-Version", API_VERSION)
    req.add_header("Content-Type", "application/json; charset=utf-8")

    try:
        with request.urlopen(req, timeout=timeout) as response:
            response_bytes = response.read()
    except error.HTTPError as exc:
        error_text = exc.read().decode("utf-8", errors="replace")
        raise GitHubIssueError(f"GitHub API error ({exc.code}): {error_text.strip()}") from exc
    except error.URLError as exc:
        raise GitHubIssueError(f"Failed to reach GitHub API: {exc.reason}") from exc

    try:
        data = json.loads(response_bytes.decode("utf-8"))
    except ValueError as exc:
        raise GitHubIssueError("GitHub returned a non-JSON response") from exc
    return IssueOutcome.from_api_payload(data)


class GitHubIssueClient:
    """:class:`SourceControlClient` backed by the GitHub REST API."""

    def __init__(self, token: str, api_url: str = DEFAULT_API_URL) -> None:
        self._token = token
        self.api_url = api_url

    def create_issue(
        self,
        repository: str,
        title: str,
        body: str,
        labels: Sequence[str] = (),
    ) -> SourceIssueRef:
        outcome = create_issue(
            token=self._token,
            repository=repository,
            title=title,
            body=body,
            api_url=self.api_url,
            labels=labels,
        )
        logger.info("Created GitHub issue %s#%d", repository, outcome.number)
        return SourceIssueRef(number=outcome.number, url=outcome.html_url)


class CopilotHandoff:
    """Hands a confirmed defect to the coding agent by opening a labelled issue."""

    def __init__(
        self,
        client: GitHubIssueClient,
        repository: str,
        label: str = DEFAULT_HANDOFF_LABEL,
        extra_labels: Sequence[str] = (),
    ) -> None:
        normalize_repository(repository)
        self.client = client
        self.repository = repository
        self.labels = [label, *[lbl for lbl in extra_labels if lbl != label]]

    def request_fix(
        self,
        record: IssueRecord,
        ticket: TicketRef | None,
        classification: "ClassificationResult",
    ) -> SourceIssueRef:
        return self.client.create_issue(
            self.repository,
            title=f"[Bug] {record.text.splitlines()[0][:80]}",
            body=render_handoff_body(record, ticket, classification),
            labels=self.labels,
        )


def render_handoff_body(
    record: IssueRecord,
    ticket: TicketRef | None,
    classification: "ClassificationResult",
) -> str:
    lines = [
        "## Reported problem",
        "",
        record.text,
        "",
        "## Classification",
        "",
        f"- Recommendation: `{classification.recommendation.action.value}`",
        f"- Confidence: {classification.confidence:.0%}",
    ]
    for category, probability in classification.probabilities.items():
        lines.append(f"- {category.value}: {probability:.1f}")
    lines.extend(["", "## Reasoning", ""])
    lines.extend(f"- {reason}" for reason in classification.reasoning)
    if classification.evidence.missing:
        lines.extend(["", f"Missing evidence: {', '.join(classification.evidence.missing)}"])
    if ticket is not None:
        lines.extend(["", f"Tracking ticket: {ticket.url}"])
    lines.extend(["", f"<!-- bug-router-issue: {record.id} -->"])
    return "\n".join(lines)
