# src/rappel/core/errors.py

from __future__ import annotations

"""
Error taxonomy.

Store and lookup errors are mostly reported through return values (None/False)
or logged and recovered; the classes still exist so callers and logs can name
the failure precisely.
"""


class RappelError(Exception):
    """Base class for every error raised by rappel."""


class ValidationError(RappelError):
    """Malformed instruction, model output, or illegal field update."""


class SandboxFailure(RappelError):
    """Base class for every failure of evaluate_snippet()."""


class SandboxViolation(SandboxFailure):
    """Snippet uses a forbidden capability (denylist or grammar match)."""

    def __init__(self, pattern: str, detail: str | None = None) -> None:
        self.pattern = pattern
        msg = f"Snippet contains forbidden pattern: {pattern}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class SandboxError(SandboxFailure):
    """Snippet failed to compile or raised while running."""


class InvalidResult(SandboxFailure, ValidationError):
    """Snippet ran but did not produce a valid instant string."""


class StoreError(RappelError):
    """Base class for task file problems."""


class StoreIOError(StoreError):
    """Task file could not be read or written."""


class StoreCorruptionError(StoreError):
    """Task file exists but could not be parsed."""


class NotFoundError(RappelError):
    """Task or reminder does not exist."""
