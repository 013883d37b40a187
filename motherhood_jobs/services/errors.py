"""
Exception hierarchy for the background job pipeline.

Top-level errors (ConfigurationError, BatchFetchError) abort a dispatcher
invocation. Everything deriving from JobHandlerError is caught per job and
turned into a status transition.
"""


class JobQueueError(Exception):
    """Base class for all queue errors."""


class ConfigurationError(JobQueueError):
    """Raised when required worker configuration is missing."""


class BatchFetchError(JobQueueError):
    """Raised when the eligible batch cannot be claimed from the datastore."""


class InvalidTransitionError(JobQueueError):
    """Raised when a job would move along a path the state machine forbids."""


class JobHandlerError(JobQueueError):
    """Base class for failures that happen while running a single job."""

    retriable: bool = True


class NoHandlerError(JobHandlerError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str):
        super().__init__(f"No handler found for job type: {job_type}")
        self.job_type = job_type


class InvalidPayloadError(JobHandlerError):
    """Raised when a payload does not match its job type's schema."""

    retriable = False


class AnalysisServiceError(JobHandlerError):
    """Raised when the image-analysis service answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HandlerTimeoutError(JobHandlerError):
    """Raised when a handler exceeds its wall-clock budget."""
