from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SKIPPED})

VALID_TRANSITIONS = {
    JobStatus.PENDING: [JobStatus.PROCESSING, JobStatus.SKIPPED],
    JobStatus.PROCESSING: [JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED],
    JobStatus.COMPLETED: [],
    JobStatus.FAILED: [],
    JobStatus.SKIPPED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: JobStatus, to_status: JobStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def is_terminal(status: JobStatus | str) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(JobStatus(from_status), [])
    return JobStatus(to_status) in allowed


def transition(from_status: JobStatus, to_status: JobStatus) -> JobStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    from_status, to_status = JobStatus(from_status), JobStatus(to_status)
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status
