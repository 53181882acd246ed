"""Report fingerprinting for duplicate detection."""

from __future__ import annotations

import hashlib
import re
from datetime import date, datetime, timedelta, timezone

from ..models import Fingerprint, Report

FILLER_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to",
    "for", "of", "with", "by", "is", "are", "was", "were", "been",
    "have", "has", "had", "will", "would", "could", "should",
})

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"\d+")
_EPOCH = date(1970, 1, 1)


def normalize_for_fingerprint(text: str) -> str:
    text = _PUNCTUATION.sub("", text.lower())
    text = _WHITESPACE.sub(" ", text)
    return _DIGITS.sub("NUM", text).strip()


def content_tokens(text: str) -> list[str]:
    """Sorted key words of ``text`` with filler and short words removed."""

    words = normalize_for_fingerprint(text).split(" ")
    return sorted(word for word in words if len(word) >= 3 and word not in FILLER_WORDS)


def short_hash(value: str, length: int) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def time_bucket(moment: datetime, days: int = 7) -> str:
    """ISO date of the start of the ``days``-wide window containing ``moment``.

    Windows are aligned on the Unix epoch so every process agrees on them.
    """

    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    day_number = (moment.date() - _EPOCH).days
    start = _EPOCH + timedelta(days=day_number - day_number % days)
    return start.isoformat()


class FingerprintEngine:
    def __init__(self, bucket_days: int = 7) -> None:
        if bucket_days < 1:
            raise ValueError("bucket_days must be at least 1")
        self.bucket_days = bucket_days

    def fingerprint(self, report: Report) -> Fingerprint:
        return Fingerprint(
            content_hash=short_hash("_".join(content_tokens(report.text)), 16),
            author_hash=short_hash(report.author_id or "unknown", 8),
            time_bucket=time_bucket(report.submitted_at, self.bucket_days),
        )
