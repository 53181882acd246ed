"""Entry points: wiring from configuration, real-time, scheduled and health handlers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from .classification.classifier import IssueClassifier
from .classification.estimator import GITHUB_MODELS_URL, OPENAI_URL, ChatCompletionEstimator, RootCauseEstimator
from .errors import InvalidReportError
from .integrations.base import (
    ChatClient,
    CodeGenerationHandoff,
    ReportSource,
    SecretProvider,
    ThreadReader,
    TicketingClient,
)
from .integrations.clickup import ClickUpClient
from .integrations.github.issues import CopilotHandoff, GitHubIssueClient
from .integrations.secrets import EnvironmentSecretProvider
from .integrations.slack import SlackClient
from .models import Report, utc_now
from .tracking.store import IssueStore, SQLiteIssueStore
from .tracking.tracker import IssueStateTracker
from .utils.config_manager import BugRouterConfig
from .utils.logging_config import get_logger
from .workflow.feedback import FeedbackHandler, PullRequestTracker
from .workflow.orchestrator import WorkflowOrchestrator
from .workflow.workflows import RemediationWorkflows, WorkflowSettings

logger = get_logger(__name__)


@dataclass
class Application:
    config: BugRouterConfig
    store: IssueStore
    tracker: IssueStateTracker
    classifier: IssueClassifier
    workflows: RemediationWorkflows
    orchestrator: WorkflowOrchestrator
    feedback: FeedbackHandler
    pull_requests: PullRequestTracker

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


def build_estimator(config: BugRouterConfig, secrets: SecretProvider) -> RootCauseEstimator | None:
    settings = config.estimator
    if settings.provider == "none":
        return None
    token = secrets.get_secret(settings.token_secret)
    if not token:
        logger.warning("No %s secret; root-cause estimation will use the fallback", settings.token_secret)
        return None
    default_endpoint = GITHUB_MODELS_URL if settings.provider == "github-models" else OPENAI_URL
    return ChatCompletionEstimator(
        token,
        model=settings.model,
        endpoint=settings.endpoint or default_endpoint,
        timeout=settings.timeout_seconds,
        max_tokens=settings.max_tokens,
    )


def build_ticketing(config: BugRouterConfig, secrets: SecretProvider) -> ClickUpClient | None:
    token = secrets.get_secret(config.clickup.token_secret)
    if not token or not config.clickup.list_id:
        return None
    return ClickUpClient(
        token,
        config.clickup.list_id,
        api_url=config.clickup.api_url,
        default_assignees=config.clickup.default_assignees or (),
    )


def build_handoff(config: BugRouterConfig, secrets: SecretProvider) -> CopilotHandoff | None:
    token = secrets.get_secret(config.github.token_secret)
    if not token or not config.github.repository:
        return None
    return CopilotHandoff(
        GitHubIssueClient(token, api_url=config.github.api_url),
        config.github.repository,
        label=config.github.handoff_label,
        extra_labels=config.github.issue_labels or (),
    )


def build_slack(config: BugRouterConfig, secrets: SecretProvider) -> SlackClient | None:
    token = secrets.get_secret(config.slack.token_secret)
    if not token:
        return None
    return SlackClient(token, api_url=config.slack.api_url, trigger_emoji=config.slack.trigger_emoji)


def build_application(
    config: BugRouterConfig | None = None,
    secrets: SecretProvider | None = None,
    *,
    store: IssueStore | None = None,
    estimator: RootCauseEstimator | None = None,
    ticketing: TicketingClient | None = None,
    handoff: CodeGenerationHandoff | None = None,
    chat: ChatClient | None = None,
    report_source: ReportSource | None = None,
    threads: ThreadReader | None = None,
    clock: Callable[[], datetime] = utc_now,
    sleep: Callable[[float], None] | None = None,
) -> Application:
    """Wire every component; explicit collaborators override the configured ones."""

    config = config or BugRouterConfig()
    secrets = secrets or EnvironmentSecretProvider()
    slack = (
        build_slack(config, secrets) if chat is None or report_source is None or threads is None else None
    )

    store = store or SQLiteIssueStore(config.tracking.db_path)
    tracker = IssueStateTracker(store, config.tracking, clock=clock)
    classifier = IssueClassifier(
        estimator if estimator is not None else build_estimator(config, secrets),
        config.classifier,
    )
    workflows = RemediationWorkflows(
        ticketing=ticketing if ticketing is not None else build_ticketing(config, secrets),
        handoff=handoff if handoff is not None else build_handoff(config, secrets),
        settings=WorkflowSettings(
            on_call=config.tracking.on_call,
            team_channel=config.slack.team_channel,
            assignees=tuple(config.clickup.default_assignees or ()),
        ),
        clock=clock,
    )
    orchestrator_kwargs: dict[str, Any] = {}
    if sleep is not None:
        orchestrator_kwargs["sleep"] = sleep
    orchestrator = WorkflowOrchestrator(
        classifier,
        tracker,
        workflows,
        chat=chat if chat is not None else slack,
        report_source=report_source if report_source is not None else slack,
        daily=config.daily,
        summary_channel=config.daily.summary_channel or config.slack.team_channel,
        **orchestrator_kwargs,
    )
    return Application(
        config=config,
        store=store,
        tracker=tracker,
        classifier=classifier,
        workflows=workflows,
        orchestrator=orchestrator,
        feedback=FeedbackHandler(
            tracker,
            workflows,
            config.feedback.authorized_users or (),
            classifier=classifier,
            threads=threads if threads is not None else slack,
        ),
        pull_requests=PullRequestTracker(tracker),
    )


def handle_report(orchestrator: WorkflowOrchestrator, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Real-time handler for one normalized inbound report."""

    try:
        report = Report.from_payload(payload)
    except InvalidReportError as exc:
        logger.warning("Rejected inbound report: %s", exc)
        return {"status": "rejected", "error": str(exc)}

    outcome = orchestrator.process(report, payload.get("user_context"))
    return {"status": "partial" if outcome.partial_success else "ok", **outcome.to_dict()}


def handle_daily(orchestrator: WorkflowOrchestrator, now: datetime | None = None) -> dict[str, Any]:
    """Scheduled handler; takes no report input."""

    return orchestrator.run_daily(now).to_dict()


def handle_reaction(feedback: FeedbackHandler, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Reaction-added event handler; reactions without a meaning are ignored."""

    reaction = str(payload.get("reaction", ""))
    message_ref = str(payload.get("message_ref") or payload.get("item_ts") or "")
    user = str(payload.get("user", ""))
    if not reaction or not message_ref:
        return {"status": "ignored", "reason": "missing reaction or message reference"}
    clarification = payload.get("clarification")
    outcome = feedback.handle_reaction(
        reaction, message_ref, user, str(clarification) if clarification is not None else None
    )
    if outcome is None:
        return {"status": "ignored", "reason": f"reaction {reaction!r} has no feedback meaning"}
    return outcome.to_dict()


def health(config: BugRouterConfig, secrets: SecretProvider | None = None) -> dict[str, Any]:
    """Report which capabilities are configured. Makes no network calls."""

    secrets = secrets or EnvironmentSecretProvider()

    def has(name: str) -> bool:
        return bool(secrets.get_secret(name))

    capabilities = {
        "estimator": config.estimator.provider != "none" and has(config.estimator.token_secret),
        "ticketing": bool(config.clickup.list_id) and has(config.clickup.token_secret),
        "source_control": bool(config.github.repository) and has(config.github.token_secret),
        "chat": has(config.slack.token_secret),
        "store": bool(config.tracking.db_path),
    }
    return {
        "status": "ok" if all(capabilities.values()) else "degraded",
        "capabilities": capabilities,
    }
