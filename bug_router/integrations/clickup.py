"""ClickUp ticketing client."""

from __future__ import annotations

from typing import Any, Mapping, Sequence
from urllib.parse import quote

import requests

from ..errors import TicketingError
from ..utils.logging_config import get_logger
from .base import TicketRef
from .retry import retry_on_transient_error

logger = get_logger(__name__)

DEFAULT_API_URL = "https://api.clickup.com/api/v2"

# ClickUp priorities: 1 urgent, 2 high, 3 normal.
PRIORITY_CODES = {"urgent": 1, "high": 2}


def priority_code(priority: str) -> int:
    return PRIORITY_CODES.get(priority, 3)


class ClickUpClient:
    """Creates and updates tasks in a single ClickUp list."""

    def __init__(
        self,
        token: str,
        list_id: str,
        api_url: str = DEFAULT_API_URL,
        default_assignees: Sequence[str] = (),
        timeout: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.list_id = list_id
        self.api_url = api_url.rstrip("/")
        self.default_assignees = list(default_assignees)
        self.timeout = timeout
        self._session = session or requests.Session()
        self.headers = {"Authorization": token, "Content-Type": "application/json"}

    def create_ticket(
        self,
        title: str,
        body: str,
        priority: str,
        assignees: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> TicketRef:
        payload: dict[str, Any] = {
            "name": title,
            "markdown_description": body,
            "priority": priority_code(priority),
            "tags": list(tags),
        }
        people = [*assignees] or self.default_assignees
        numeric = [int(person) for person in people if str(person).isdigit()]
        if numeric:
            payload["assignees"] = numeric

        data = self._request("POST", f"/list/{self.list_id}/task", payload)
        try:
            ticket_id = str(data["id"])
        except (KeyError, TypeError) as exc:
            raise TicketingError("Unexpected ClickUp response payload") from exc
        url = str(data.get("url") or f"https://app.clickup.com/t/{ticket_id}")
        logger.info("Created ClickUp task %s (%s)", ticket_id, priority)
        return TicketRef(id=ticket_id, url=url)

    def update_ticket(self, ticket_id: str, fields: Mapping[str, Any]) -> None:
        payload = dict(fields)
        # Tags are not task fields in ClickUp; each one is added separately.
        tags = payload.pop("tags", None) or []
        if isinstance(payload.get("priority"), str):
            payload["priority"] = priority_code(payload["priority"])
        if payload:
            self._request("PUT", f"/task/{ticket_id}", payload)
        for tag in tags:
            self._request("POST", f"/task/{ticket_id}/tag/{quote(str(tag), safe='')}", {})
        logger.info("Updated ClickUp task %s: %s", ticket_id, ", ".join(sorted(payload)))

    @retry_on_transient_error()
    def _send(self, method: str, path: str, payload: Mapping[str, Any]) -> requests.Response:
        return self._session.request(
            method,
            f"{self.api_url}{path}",
            headers=self.headers,
            json=payload,
            timeout=self.timeout,
        )

    def _request(self, method: str, path: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = self._send(method, path, payload)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as exc:
            raise TicketingError(f"ClickUp API request failed: {exc}") from exc
        except ValueError as exc:
            raise TicketingError("ClickUp returned a non-JSON response") from exc
