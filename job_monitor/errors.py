"""Error taxonomy for job_monitor.

The REST layer maps each class to an HTTP status (see ``api/rest.py``).
``ArchivalError`` is only raised on the background archiving path and is
never reported to an HTTP client.
"""


class JobMonitorError(Exception):
    """Base class for all job_monitor errors."""


class ValidationError(JobMonitorError):
    """Malformed or missing input; rejected before reaching storage."""


class DuplicateJobError(JobMonitorError):
    """A job with the same jobId and cluster started within the duplicate window."""

    def __init__(self, message: str, conflicting_id: int):
        super().__init__(message)
        self.conflicting_id = conflicting_id


class NotFoundError(JobMonitorError):
    """The requested job (or tag) does not exist."""


class InvalidTransitionError(JobMonitorError):
    """A job or monitoring-status transition that the state machine forbids."""


class StoreError(JobMonitorError):
    """Opaque failure of the relational store."""


class ArchivalError(JobMonitorError):
    """Failure while fetching metric data or writing the job archive."""


class AuthenticationError(JobMonitorError):
    """A request carried no credentials, or credentials nobody issued."""
