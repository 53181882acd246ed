"""Canned help replies for reports classified as user-education gaps."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EducationTopic:
    name: str
    patterns: tuple[str, ...]
    response: str


DEFAULT_TOPICS: tuple[EducationTopic, ...] = (
    EducationTopic(
        "password",
        (r"forgot.*password", r"can'?t.*log ?in", r"lost.*password", r"reset.*password"),
        "*Password help*\n"
        "1. Open the login page and click \"Forgot Password?\"\n"
        "2. Enter the email address you registered with\n"
        "3. Follow the reset link in the email to choose a new password\n"
        "Check your spam folder if the email does not arrive within a few minutes.",
    ),
    EducationTopic(
        "navigation",
        (r"where.*is", r"can'?t.*find", r"how.*do.*i.*find", r"where (?:to|do i|can i)"),
        "*Finding your way around*\n"
        "- Profile settings: click your avatar, then Profile Settings\n"
        "- Create an experience: main menu, then Create, then New Experience\n"
        "- Job postings: Jobs in the navigation bar, then Post a Job\n"
        "- Your dashboard: click your avatar, then Dashboard\n"
        "The search bar at the top also finds pages and features by name.",
    ),
    EducationTopic(
        "feature",
        (r"what.*does.*mean", r"how.*does.*work", r"explain"),
        "*How it works*\n"
        "Experiences are learning sessions run by experts, expert profiles showcase skills, "
        "the job marketplace lists open roles and collections save content you like. "
        "The Getting Started guide walks through each of them.",
    ),
    EducationTopic(
        "browser",
        (r"browser", r"chrome", r"safari", r"firefox", r"cache"),
        "*Browser troubleshooting*\n"
        "1. Clear your browser cache and cookies\n"
        "2. Try a private/incognito window\n"
        "3. Disable extensions temporarily\n"
        "4. Make sure your browser is up to date",
    ),
    EducationTopic(
        "mobile",
        (r"mobile", r"phone", r"iphone", r"android", r"tablet"),
        "*Mobile tips*\n"
        "Update the app or mobile browser, check your connection and try rotating the device. "
        "Some management features are only available on desktop.",
    ),
    EducationTopic(
        "account",
        (r"account", r"profile", r"verification", r"incomplete"),
        "*Account help*\n"
        "Complete every required profile field and confirm your email from the verification message. "
        "Profile changes can take a few minutes to appear.",
    ),
    EducationTopic(
        "experience",
        (r"experience", r"create.*experience", r"how.*to.*create"),
        "*Creating an experience*\n"
        "1. Open the main menu and choose Create, then New Experience\n"
        "2. Fill in the title, description and requirements\n"
        "3. Set the schedule and pricing, then submit for review",
    ),
    EducationTopic(
        "job",
        (r"\bjobs?\b", r"apply", r"posting", r"career"),
        "*Jobs*\n"
        "Browse jobs by category or keyword from Jobs in the navigation bar. "
        "To publish a role, open Jobs, choose Post a Job and complete the form.",
    ),
)

GENERIC_RESPONSE = (
    "*We're here to help!*\n"
    "This looks like a how-to question rather than a technical bug.\n"
    "For faster help please tell us what you were trying to do, what you expected "
    "and what actually happened (screenshots help).\n"
    "Common fixes: clear your browser cache, try another browser or device, check your connection.\n"
    "If this really is a bug, react with :rotating_light: and the team will take a look."
)


def extract_title(text: str, limit: int = 50) -> str:
    """A short single-line title for tickets created from ``text``."""

    clean = re.sub(r"\s+", " ", re.sub(r"[^\w\s]", " ", text)).strip()
    if len(clean) > limit:
        clean = clean[: limit - 3] + "..."
    return clean or "General Help Request"


@dataclass(frozen=True)
class EducationResponse:
    topic: str
    text: str


class EducationResponder:
    """Chooses the canned reply whose topic matches the most patterns."""

    def __init__(self, topics: Sequence[EducationTopic] = DEFAULT_TOPICS) -> None:
        self._topics = tuple(
            (topic, tuple(re.compile(p, re.IGNORECASE) for p in topic.patterns)) for topic in topics
        )

    def respond(self, text: str, context: Mapping[str, Any] | None = None) -> EducationResponse:
        best: EducationTopic | None = None
        best_hits = 0
        for topic, patterns in self._topics:
            hits = sum(1 for pattern in patterns if pattern.search(text))
            if hits > best_hits:
                best, best_hits = topic, hits

        if best is None:
            logger.debug("No education topic matched; using generic response")
            response = EducationResponse("generic", GENERIC_RESPONSE)
        else:
            response = EducationResponse(best.name, best.response)

        tips = self._contextual_tips(context or {})
        if tips:
            response = EducationResponse(response.topic, response.text + "\n\n" + tips)
        return response

    @staticmethod
    def _contextual_tips(context: Mapping[str, Any]) -> str:
        tips = []
        if context.get("user_type") == "expert":
            tips.append("Expert tip: profile completeness affects how often you appear in search results.")
        elif context.get("user_type") == "learner":
            tips.append("Learner tip: save experiences to a collection to find them again quickly.")
        if context.get("tech_level") == "beginner":
            tips.append("New here? The platform tour gives a complete overview in a few minutes.")
        return "\n".join(tips)
