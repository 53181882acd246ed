from .fingerprint import FingerprintEngine, content_tokens, normalize_for_fingerprint, time_bucket
from .store import IssueStore, SQLiteIssueStore
from .tracker import IssueStateTracker

__all__ = [
    "FingerprintEngine",
    "IssueStateTracker",
    "IssueStore",
    "SQLiteIssueStore",
    "content_tokens",
    "normalize_for_fingerprint",
    "time_bucket",
]
