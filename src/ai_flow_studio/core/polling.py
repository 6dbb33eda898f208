"""
Task Poller - Waits for an asynchronous backend job to finish.

The poller queries, then sleeps, until the job reaches a terminal state
or the attempt ceiling is hit. Query failures that look transient are
logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import aiohttp

from ai_flow_studio.core.errors import BackendError, TaskTimeoutError
from ai_flow_studio.providers.base import (
    AuthenticationError,
    JobState,
    JobStatus,
    ProviderError,
    VideoJobBackend,
)


logger = logging.getLogger(__name__)


# Default poll cadence: 3 s x 200 checks = 10 minutes
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_MAX_ATTEMPTS = 200


StatusCallback = Callable[[JobStatus], None]
SleepFunc = Callable[[float], Awaitable[None]]


class TaskPoller:
    """
    Polls a VideoJobBackend for one job.

    Args:
        backend: Backend to query
        interval: Seconds between checks
        max_attempts: Checks before giving up with TaskTimeoutError
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        backend: VideoJobBackend,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.backend = backend
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def poll(
        self,
        job_id: str,
        on_update: StatusCallback | None = None,
    ) -> JobStatus:
        """
        Wait for ``job_id`` to finish.

        Returns:
            The terminal JobStatus of a succeeded job

        Raises:
            BackendError: The job failed
            TaskTimeoutError: The job did not finish within max_attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await self.backend.query(job_id)
            except AuthenticationError:
                raise
            except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    "Status check %d/%d for job %s failed: %s",
                    attempt, self.max_attempts, job_id, e,
                )
            else:
                logger.debug(
                    "Job %s attempt %d: %s", job_id, attempt, status.status.value
                )
                if on_update is not None:
                    on_update(status)
                if status.status == JobState.SUCCEEDED:
                    return status
                if status.status == JobState.FAILED:
                    raise BackendError(status.error or f"Task {job_id} failed")

            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        raise TaskTimeoutError(job_id, self.max_attempts)
