"""Consecutive-failure tracking and escalation warnings."""

from __future__ import annotations

import logging

from aues_sync.tasks import SyncTask

logger = logging.getLogger("aues_sync.failure_tracker")
escalation_logger = logging.getLogger("aues_sync.escalation")

DEFAULT_FAILURE_THRESHOLD = 5


class FailureTracker:
    """Maintain each task's consecutive terminal failure count.

    The executor calls ``record_success`` after an accepted request and
    ``record_failure`` once per terminal failure.  Intermediate retries are
    never recorded here.

    The escalated warning is re-checked on every terminal failure, so it
    fires on the threshold-th failure and on each one after it until a
    success resets the counter.
    """

    def __init__(self, threshold: int = DEFAULT_FAILURE_THRESHOLD) -> None:
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    def record_success(self, task: SyncTask) -> None:
        if task.failure_state.consecutive_failures:
            logger.info(
                "%s: recovered after %d consecutive failures",
                task.label,
                task.failure_state.consecutive_failures,
            )
        task.failure_state.consecutive_failures = 0

    def record_failure(self, task: SyncTask) -> int:
        """Count one terminal failure for ``task``.

        Returns:
            The updated consecutive failure count.
        """
        task.failure_state.consecutive_failures += 1
        count = task.failure_state.consecutive_failures
        logger.debug("%s: consecutive failures = %d", task.label, count)

        if self.is_escalated(task):
            escalation_logger.warning(
                "ESCALATION: %s has failed %d consecutive times (threshold %d). "
                "Check the endpoint at %s",
                task.label,
                count,
                self._threshold,
                task.url,
            )
        return count

    def is_escalated(self, task: SyncTask) -> bool:
        return task.failure_state.consecutive_failures >= self._threshold
