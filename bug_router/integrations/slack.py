"""Slack Web API client: report source and notification sink."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

import requests

from ..errors import ChatError, InvalidReportError
from ..models import Report, parse_timestamp
from ..utils.logging_config import get_logger
from .retry import retry_on_transient_error

logger = get_logger(__name__)

DEFAULT_API_URL = "https://slack.com/api"


class SlackClient:
    """Posts messages and reads trigger-marked reports from channels."""

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        trigger_emoji: str = "sos",
        timeout: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.trigger_emoji = trigger_emoji
        self.timeout = timeout
        self._session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }

    def post_message(self, channel: str, text: str, thread_ref: str | None = None) -> None:
        payload: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ref:
            payload["thread_ts"] = thread_ref
        self._call("POST", "chat.postMessage", json=payload)

    def fetch_reports(self, channel: str, since: datetime, limit: int) -> list[Report]:
        """Messages in ``channel`` newer than ``since`` carrying the trigger emoji."""

        data = self._call(
            "GET",
            "conversations.history",
            params={"channel": channel, "oldest": f"{since.timestamp():.6f}", "limit": min(max(limit, 1), 200)},
        )
        reports: list[Report] = []
        for message in data.get("messages", []):
            if len(reports) >= limit:
                break
            report = self._to_report(channel, message)
            if report is not None:
                reports.append(report)
        # Slack returns newest first; process in arrival order.
        reports.sort(key=lambda item: item.submitted_at)
        logger.info("Fetched %d trigger-marked reports from %s", len(reports), channel)
        return reports

    def fetch_thread_replies(self, channel: str, thread_ref: str) -> list[str]:
        """Human replies in a message thread, oldest first, without the parent message."""

        data = self._call("GET", "conversations.replies", params={"channel": channel, "ts": thread_ref, "limit": 50})
        return [
            message.get("text", "")
            for message in data.get("messages", [])
            if message.get("ts") != thread_ref and not message.get("bot_id") and message.get("text")
        ]

    def has_trigger(self, message: Mapping[str, Any]) -> bool:
        return self._in_text(message) or any(
            reaction.get("name") == self.trigger_emoji for reaction in message.get("reactions", [])
        )

    def _in_text(self, message: Mapping[str, Any]) -> bool:
        text = message.get("text", "")
        return f":{self.trigger_emoji}:" in text or (self.trigger_emoji == "sos" and "\U0001f198" in text)

    def _to_report(self, channel: str, message: Mapping[str, Any]) -> Report | None:
        if message.get("subtype") or message.get("bot_id") or not self.has_trigger(message):
            return None
        try:
            return Report(
                text=message.get("text", ""),
                author_id=message.get("user", ""),
                channel_id=channel,
                submitted_at=parse_timestamp(message["ts"]),
                urgent=self._in_text(message),
                message_ref=message["ts"],
            )
        except (InvalidReportError, KeyError, ValueError) as exc:
            logger.warning("Skipping unusable Slack message in %s: %s", channel, exc)
            return None

    @retry_on_transient_error()
    def _send(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        return self._session.request(
            method,
            f"{self.api_url}/{endpoint}",
            headers=self.headers,
            timeout=self.timeout,
            **kwargs,
        )

    def _call(self, method: str, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._send(method, endpoint, **kwargs)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as exc:
            raise ChatError(f"Slack API request failed: {exc}") from exc
        except ValueError as exc:
            raise ChatError("Slack returned a non-JSON response") from exc
        if not data.get("ok", False):
            raise ChatError(f"Slack API error from {endpoint}: {data.get('error', 'unknown_error')}")
        return data
