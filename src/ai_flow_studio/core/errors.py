"""
Engine Errors - Failure taxonomy for the flow engine.

Every failure that can happen while editing or running a flow maps to one
of these classes. The orchestrator catches them at the node boundary and
turns them into ``status``/``error`` fields on the node payload.
"""

from __future__ import annotations


class FlowError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(FlowError):
    """An illegal connection attempt (rejected without mutating the graph)."""
    pass


class MissingInputError(FlowError):
    """A required port is unconnected or resolves to an empty value."""

    def __init__(self, message: str, port: str | None = None):
        super().__init__(message)
        self.port = port


class UpstreamResolutionError(FlowError):
    """A derive chain (crop/split) could not fetch or decode its base image."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class BackendError(FlowError):
    """A remote generation call reported failure. The message is shown verbatim."""
    pass


class TaskTimeoutError(FlowError):
    """The task poller exceeded its attempt ceiling."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(
            f"Task {job_id} did not finish after {attempts} status checks"
        )
        self.job_id = job_id
        self.attempts = attempts


class PartialBatchFailure(FlowError):
    """
    Some slots of a multi-output batch failed.

    Not raised: the node still succeeds when at least one slot produced an
    image. The instance is attached to the run outcome for diagnostics.
    """

    def __init__(self, slot_errors: dict[int, str], total: int):
        self.slot_errors = dict(slot_errors)
        self.total = total
        super().__init__(self.describe())

    def describe(self) -> str:
        parts = [
            f"slot {index + 1}: {message}"
            for index, message in sorted(self.slot_errors.items())
        ]
        return f"{len(self.slot_errors)}/{self.total} slots failed ({'; '.join(parts)})"
