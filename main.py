#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from bug_router.errors import BugRouterError, InvalidReportError
from bug_router.handlers import build_application, build_estimator, handle_daily, handle_reaction, handle_report, health
from bug_router.classification.classifier import IssueClassifier
from bug_router.integrations.secrets import EnvironmentSecretProvider
from bug_router.models import utc_now
from bug_router.utils.config_manager import BugRouterConfig, ConfigManager
from bug_router.utils.logging_config import setup_logging

OUTPUT_TEXT = "text"
OUTPUT_JSON = "json"
DEFAULT_CONFIG_PATH = "config.yaml"


def load_config(path: str | None) -> BugRouterConfig:
    """Load the YAML config; the default path is optional, an explicit one is not."""

    if path is None:
        if not Path(DEFAULT_CONFIG_PATH).exists():
            return BugRouterConfig()
        path = DEFAULT_CONFIG_PATH
    return ConfigManager.load_config_with_env_substitution(path)


def emit(data: dict[str, Any], mode: str, text: str) -> None:
    if mode == OUTPUT_JSON:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Classify, deduplicate and route chat bug reports.")
    parser.add_argument("--config", help=f"Path to YAML configuration (default: {DEFAULT_CONFIG_PATH} if present).")
    parser.add_argument(
        "--output",
        choices=(OUTPUT_TEXT, OUTPUT_JSON),
        default=OUTPUT_TEXT,
        help="Output format.",
    )
    parser.add_argument("--log-level", help="Override the configured log level.")
    subcommands = parser.add_subparsers(dest="command", required=True)

    classify = subcommands.add_parser("classify", help="Classify report text without tracking it.")
    classify.add_argument("text", help="Report text.")
    classify.add_argument("--urgent", action="store_true", help="Treat the report as carrying the urgency marker.")

    process = subcommands.add_parser("process", help="Classify, track and route one report.")
    process.add_argument("--text", required=True, help="Report text.")
    process.add_argument("--author", required=True, help="Reporter id.")
    process.add_argument("--channel", required=True, help="Channel id.")
    process.add_argument("--ts", help="Message timestamp (ISO or epoch seconds); defaults to now.")
    process.add_argument("--urgent", action="store_true", help="Report carries the urgency marker.")

    subcommands.add_parser("daily", help="Run the scheduled pass: new reports and stuck issues.")

    stuck = subcommands.add_parser("stuck", help="List issues stuck past their state threshold.")
    stuck.add_argument("--limit", type=int, default=None, help="Maximum number of issues to list.")

    feedback = subcommands.add_parser("feedback", help="Apply a team reaction override.")
    feedback.add_argument("--reaction", required=True, help="Reaction name, e.g. rotating_light.")
    feedback.add_argument("--message", required=True, help="Timestamp of the routed chat message.")
    feedback.add_argument("--user", required=True, help="User applying the reaction.")
    feedback.add_argument(
        "--clarification",
        help="Clarification text for revisions; read from the message thread when omitted.",
    )

    pull_request = subcommands.add_parser("pr", help="Record pull-request progress for an issue.")
    pull_request.add_argument("issue_id", help="Tracked issue id.")
    pr_state = pull_request.add_mutually_exclusive_group(required=True)
    pr_state.add_argument("--opened", type=int, metavar="NUMBER", help="Pull request number that was opened.")
    pr_state.add_argument("--review", action="store_true", help="Review has started.")
    pr_state.add_argument("--merged", action="store_true", help="Pull request was merged.")
    pr_state.add_argument("--closed", action="store_true", help="Pull request was closed without merging.")
    pull_request.add_argument("--url", default="", help="Pull request URL (with --opened).")

    subcommands.add_parser("health", help="Show which integrations are configured.")
    return parser


def classify_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    estimator = build_estimator(config, EnvironmentSecretProvider())
    result = IssueClassifier(estimator, config.classifier).classify(args.text, None, args.urgent)
    lines = [f"Recommendation: {result.recommendation.action.value} ({result.recommendation.priority})"]
    lines.append(f"Confidence: {result.confidence:.2f}")
    lines.extend(f"  {category.value}: {value:.1f}" for category, value in result.probabilities.items())
    lines.extend(f"- {reason}" for reason in result.reasoning)
    emit(result.to_dict(), args.output, "\n".join(lines))
    return 0


def process_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    payload = {
        "text": args.text,
        "author_id": args.author,
        "channel_id": args.channel,
        "timestamp": args.ts or utc_now().isoformat(),
        "urgent": args.urgent,
    }
    app = build_application(config)
    try:
        result = handle_report(app.orchestrator, payload)
    finally:
        app.close()
    if result["status"] == "rejected":
        print(f"error: {result['error']}", file=sys.stderr)
        return 2
    emit(result, args.output, f"{result['action']} -> {result['state']} (issue {result['record_id']})")
    return 1 if result["status"] == "partial" else 0


def daily_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    app = build_application(config)
    try:
        summary = handle_daily(app.orchestrator)
    finally:
        app.close()
    emit(summary, args.output, json.dumps(summary, indent=2))
    return 1 if summary["errors"] else 0


def stuck_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    app = build_application(config)
    try:
        records = app.tracker.get_stuck_issues(limit=args.limit)
    finally:
        app.close()
    data = {"stuck": [record.to_dict() for record in records]}
    text = "\n".join(
        f"{record.id} [{record.state.value}] since {record.updated_at.isoformat()}: {record.text[:60]}"
        for record in records
    ) or "No stuck issues."
    emit(data, args.output, text)
    return 0


def feedback_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    app = build_application(config)
    try:
        result = handle_reaction(
            app.feedback,
            {
                "reaction": args.reaction,
                "message_ref": args.message,
                "user": args.user,
                "clarification": args.clarification,
            },
        )
    finally:
        app.close()
    emit(result, args.output, f"{result['status']}: {result.get('message') or result.get('reason', '')}")
    return 0 if result["status"] in ("applied", "ignored") else 1


def pr_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    app = build_application(config)
    try:
        if args.opened is not None:
            record = app.pull_requests.record_pull_request(args.issue_id, args.opened, args.url)
        elif args.review:
            record = app.pull_requests.advance_review(args.issue_id)
        else:
            record = app.pull_requests.advance_review(args.issue_id, merged=args.merged)
    finally:
        app.close()
    emit(record.to_dict(), args.output, f"Issue {record.id} is now {record.state.value}")
    return 0


def health_cli(args: argparse.Namespace, config: BugRouterConfig) -> int:
    report = health(config)
    text = "\n".join(
        f"{name}: {'configured' if ok else 'missing'}" for name, ok in report["capabilities"].items()
    )
    emit(report, args.output, text)
    return 0


COMMANDS = {
    "classify": classify_cli,
    "process": process_cli,
    "daily": daily_cli,
    "stuck": stuck_cli,
    "feedback": feedback_cli,
    "pr": pr_cli,
    "health": health_cli,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    setup_logging(args.log_level or config.log_level)

    try:
        return COMMANDS[args.command](args, config)
    except InvalidReportError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except BugRouterError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
