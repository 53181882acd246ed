"""Issue classification, deduplication and workflow routing for chat bug reports."""

__version__ = "0.3.0"
