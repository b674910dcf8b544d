"""Error taxonomy for the sync trigger process.

Endpoint failures never appear here: they are absorbed by the executor and
reported as ``Failure`` outcomes.  These classes cover what is left, i.e.
startup configuration problems and anything escaping a scheduled task.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for process-level sync trigger errors."""


class ConfigurationError(SyncError):
    """One or more required configuration values are absent or invalid.

    Attributes:
        missing: Environment variable names that are not set.
        invalid: Human-readable messages for values that failed validation.
    """

    def __init__(self, missing: list[str] | None = None, invalid: list[str] | None = None) -> None:
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])
        parts = []
        if self.missing:
            parts.append("missing: " + ", ".join(self.missing))
        if self.invalid:
            parts.append("invalid: " + "; ".join(self.invalid))
        super().__init__("Configuration error (" + " | ".join(parts) + ")")


class UnhandledTaskError(SyncError):
    """An unexpected exception escaped a scheduled task invocation."""

    def __init__(self, label: str, cause: BaseException) -> None:
        self.label = label
        self.cause = cause
        super().__init__(f"Unhandled error in task '{label}': {cause!r}")
        self.__cause__ = cause
