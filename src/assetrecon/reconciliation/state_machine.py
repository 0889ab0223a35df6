"""Job state machine for Assetrecon reconciliation jobs.

A job is created ``pending``, moves to ``processing`` when its row loop
starts, and ends ``completed`` when the loop reaches the last row. A job left
in ``processing`` (for example after a restart) may be processed again; a
completed job may not. Decisions can be recorded in every state.
"""

from __future__ import annotations

from assetrecon.database.models.job import JobStatus
from assetrecon.errors import JobStateError


class InvalidTransitionError(JobStateError):
    """Raised when an invalid job state transition is attempted.

    Attributes:
        current: The current job status.
        target: The attempted target status.
        job_id: The ID of the job that failed to transition.
    """

    def __init__(
        self,
        current: JobStatus,
        target: JobStatus,
        job_id: str | None = None,
    ) -> None:
        self.current = current
        self.target = target
        self.job_id = job_id
        msg = f"Invalid transition from {current.value} to {target.value}"
        if job_id:
            msg += f" for job {job_id}"
        super().__init__(msg)


# Authoritative state machine definition
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.pending: {JobStatus.processing},
    JobStatus.processing: {JobStatus.processing, JobStatus.completed},
    JobStatus.completed: set(),  # Terminal for processing; decisions still allowed
}


def validate_transition(current: JobStatus, target: JobStatus) -> bool:
    """Validate if a state transition is allowed.

    Args:
        current: Current job status.
        target: Target job status.

    Returns:
        True if the transition is valid according to VALID_TRANSITIONS.
    """
    return target in VALID_TRANSITIONS.get(current, set())


def ensure_transition(
    current: JobStatus,
    target: JobStatus,
    job_id: str | None = None,
) -> None:
    """Raise InvalidTransitionError unless the transition is allowed."""
    if not validate_transition(current, target):
        raise InvalidTransitionError(current, target, job_id)
