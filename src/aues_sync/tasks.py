"""Task and outcome models for the sync trigger.

A ``SyncTask`` is one named, independently scheduled sync target.  Each task
owns its ``FailureState``; nothing is shared between tasks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

# Statuses that end an attempt sequence immediately, without retrying.
NON_RETRYABLE_STATUSES: frozenset[int] = frozenset({400, 401, 403, 429})


class SchedulePolicy(str, Enum):
    FIXED = "fixed"
    ADAPTIVE = "adaptive"


@dataclass
class FailureState:
    """Consecutive terminal failures for one task."""

    consecutive_failures: int = 0


def default_payload(label: str) -> dict[str, str]:
    return {"message": f"Sync {label}"}


@dataclass
class SyncTask:
    """One sync target.

    Attributes:
        label:            Task identity, used in logs and the request body.
        url:              Endpoint that receives the POST.
        policy:           FIXED (constant period) or ADAPTIVE (server-directed).
        interval_seconds: Fixed period, or the adaptive fallback delay.
        payload_builder:  Callable(label) -> JSON body.  Defaults to
                          ``{"message": "Sync <label>"}``.
        failure_state:    Mutable failure counter owned by this task.
    """

    label: str
    url: str
    policy: SchedulePolicy
    interval_seconds: float
    payload_builder: Callable[[str], Any] = default_payload
    failure_state: FailureState = field(default_factory=FailureState)

    def build_payload(self) -> Any:
        return self.payload_builder(self.label)

    @property
    def consecutive_failures(self) -> int:
        return self.failure_state.consecutive_failures


class AttemptOutcome:
    """Result of one attempt sequence.  See ``Success`` and ``Failure``."""

    ok: bool = False


@dataclass
class Success(AttemptOutcome):
    """The endpoint accepted the sync request.

    Attributes:
        data: Parsed JSON response body, or None when absent/unparseable.
    """

    data: Any | None = None
    ok: bool = field(default=True, init=False)


@dataclass
class Failure(AttemptOutcome):
    """The attempt sequence ended without success.

    Attributes:
        retryable:   False when the endpoint rejected the request outright.
        status_code: Last HTTP status seen, if any response arrived.
        error:       Description of the last error.
    """

    retryable: bool
    status_code: int | None = None
    error: str | None = None
    ok: bool = field(default=False, init=False)
