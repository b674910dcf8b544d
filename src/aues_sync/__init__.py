"""AUES dashboard sync trigger.

Periodically POSTs to the dashboard's sync endpoints so the dashboard pulls
fresh data.  Each endpoint is a task with its own scheduling policy.

Modules:
    tasks          : SyncTask, FailureState and attempt outcomes
    executor       : Backoff-retry executor (one attempt sequence per call)
    failure_tracker: Consecutive-failure counter and escalation warnings
    scheduler      : Fixed-interval and adaptive-interval schedulers
    lifecycle      : Signal shutdown and the fail-fast error boundary
    config         : Environment-driven settings
    exceptions     : Configuration and unhandled-task errors
    main           : Process entry point (`python -m aues_sync`)
"""

from aues_sync.executor import BackoffRetryExecutor
from aues_sync.failure_tracker import FailureTracker
from aues_sync.scheduler import (
    AdaptiveIntervalScheduler,
    FixedIntervalScheduler,
    next_delay,
)
from aues_sync.tasks import (
    AttemptOutcome,
    Failure,
    FailureState,
    SchedulePolicy,
    Success,
    SyncTask,
)

__all__ = [
    "AdaptiveIntervalScheduler",
    "AttemptOutcome",
    "BackoffRetryExecutor",
    "Failure",
    "FailureState",
    "FailureTracker",
    "FixedIntervalScheduler",
    "SchedulePolicy",
    "Success",
    "SyncTask",
    "next_delay",
]
