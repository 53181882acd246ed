"""Secret lookup from the process environment."""

from __future__ import annotations

import os
from typing import Mapping


class EnvironmentSecretProvider:
    """Reads secrets from environment variables; empty values count as missing."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def get_secret(self, name: str) -> str | None:
        value = self._environ.get(name)
        return value or None
