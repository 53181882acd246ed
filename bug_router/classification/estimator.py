"""Root-cause estimation through an OpenAI-compatible chat-completions API.

Estimators return ``None`` when they cannot produce a trustworthy answer; the
classifier substitutes :data:`FALLBACK_ESTIMATE` in that case, so a broken or
unreachable model never aborts classification.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import requests
from jsonschema import ValidationError, validate

from ..models import Category
from ..utils.logging_config import get_logger, log_exception

logger = get_logger(__name__)

GITHUB_MODELS_URL = "https://models.inference.ai.github.com/v1/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

# Wire names used in the estimator's JSON contract.
WIRE_NAMES: dict[Category, str] = {
    Category.HUMAN_ERROR: "humanError",
    Category.ADMIN_CONFIG: "adminConfig",
    Category.CODE_BUG: "codeBug",
    Category.INFRASTRUCTURE: "infrastructure",
}

_CATEGORY_SCHEMA = {
    "type": "object",
    "required": ["probability"],
    "properties": {
        "probability": {"type": "number", "minimum": 0, "maximum": 100},
        "reasons": {"type": "array", "items": {"type": "string"}},
    },
}

ESTIMATE_SCHEMA = {
    "type": "object",
    "required": [*WIRE_NAMES.values(), "confidence"],
    "properties": {
        **{name: _CATEGORY_SCHEMA for name in WIRE_NAMES.values()},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "reasoning": {"type": "string"},
    },
}


@dataclass(frozen=True)
class RootCauseEstimate:
    probabilities: Mapping[Category, float]
    confidence: float
    reasons: Mapping[Category, tuple[str, ...]] = field(default_factory=dict)
    reasoning: str = ""
    source: str = "model"

    @classmethod
    def from_api_payload(cls, payload: Mapping[str, Any], source: str = "model") -> "RootCauseEstimate":
        """Validate a decoded estimator reply and convert it."""

        try:
            validate(instance=payload, schema=ESTIMATE_SCHEMA)
        except ValidationError as exc:
            raise ValueError(f"Malformed root-cause estimate: {exc.message}") from exc
        return cls(
            probabilities={c: float(payload[w]["probability"]) for c, w in WIRE_NAMES.items()},
            confidence=float(payload["confidence"]),
            reasons={c: tuple(payload[w].get("reasons", [])) for c, w in WIRE_NAMES.items()},
            reasoning=str(payload.get("reasoning", "")),
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            WIRE_NAMES[c]: {"probability": p, "reasons": list(self.reasons.get(c, ()))}
            for c, p in self.probabilities.items()
        }
        data.update(confidence=self.confidence, reasoning=self.reasoning, source=self.source)
        return data


FALLBACK_ESTIMATE = RootCauseEstimate(
    probabilities={
        Category.HUMAN_ERROR: 40.0,
        Category.ADMIN_CONFIG: 20.0,
        Category.CODE_BUG: 20.0,
        Category.INFRASTRUCTURE: 20.0,
    },
    confidence=0.3,
    reasons={category: ("AI analysis unavailable",) for category in WIRE_NAMES},
    reasoning="Root-cause estimator unavailable; using fallback distribution",
    source="fallback",
)


class RootCauseEstimator(Protocol):
    def estimate(self, text: str, context: Mapping[str, Any]) -> RootCauseEstimate | None:
        ...


class StaticEstimator:
    """Returns a fixed estimate. Used offline and in tests."""

    def __init__(self, estimate: RootCauseEstimate | None = None) -> None:
        self._estimate = estimate

    def estimate(self, text: str, context: Mapping[str, Any]) -> RootCauseEstimate | None:
        return self._estimate


_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(content: str) -> Any:
    """Decode the JSON object in a model reply, tolerating fences and chatter."""

    content = content.strip()
    fenced = _FENCE.search(content)
    if fenced:
        content = fenced.group(1).strip()
    if not content.startswith("{"):
        start, end = content.find("{"), content.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object found in model reply")
        content = content[start:end + 1]
    return json.loads(content)


class ChatCompletionEstimator:
    """
    Root-cause estimator backed by a chat-completions endpoint.

    Works with GitHub Models (default) and any OpenAI-compatible API.
    """

    SYSTEM_PROMPT = "You are an expert software issue analyst. Always respond with valid JSON only."

    def __init__(
        self,
        token: str,
        model: str = "gpt-4o",
        endpoint: str = GITHUB_MODELS_URL,
        timeout: int = 30,
        max_tokens: int = 600,
        session: requests.Session | None = None,
    ) -> None:
        self.model = model
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def estimate(self, text: str, context: Mapping[str, Any]) -> RootCauseEstimate | None:
        try:
            payload = self._call_api(self._build_prompt(text, context))
            return RootCauseEstimate.from_api_payload(payload, source=self.model)
        except Exception as exc:
            log_exception(logger, "Root-cause estimation failed", exc)
            return None

    def _build_prompt(self, text: str, context: Mapping[str, Any]) -> str:
        return f"""Analyze this issue report and estimate the probability of each root cause.

ISSUE REPORT: "{text[:2000]}"

USER CONTEXT:
- User Type: {context.get('user_type', 'unknown')}
- Technical Level: {context.get('tech_level', 'unknown')}
- Previous Issues: {context.get('previous_issues', 'none')}

Give a probability from 0 to 100 for each category:
1. humanError: misunderstanding a feature, user configuration, account or device problems
2. adminConfig: admin action, system configuration, backend or third-party configuration
3. codeBug: frontend, backend, API integration or database query defect
4. infrastructure: hosting, network, third-party outage, performance or scaling

Return JSON only:
{{
  "humanError": {{"probability": 0, "reasons": []}},
  "adminConfig": {{"probability": 0, "reasons": []}},
  "codeBug": {{"probability": 0, "reasons": []}},
  "infrastructure": {{"probability": 0, "reasons": []}},
  "confidence": 0.0,
  "reasoning": "short explanation"
}}"""

    def _call_api(self, prompt: str) -> Any:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.1,
            "max_tokens": self.max_tokens,
        }
        response = self._session.post(self.endpoint, headers=self.headers, json=body, timeout=self.timeout)
        response.raise_for_status()
        result = response.json()
        choices = result.get("choices") if isinstance(result, dict) else None
        if not choices:
            raise ValueError("Invalid response structure from chat completions API")
        return extract_json(choices[0]["message"]["content"])
