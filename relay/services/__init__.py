from relay.services.job_queue import DeliveryError, JobOutcome, JobQueue, JobValidationError
from relay.services.job_status import (
    InvalidTransitionError,
    JobStatus,
    can_transition,
    transition,
)
from relay.services.retry_policy import RetryPolicy
