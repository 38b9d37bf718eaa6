"""Exception types for jobgate."""


class JobgateError(Exception):
    """Base exception for all jobgate errors."""


class ConfigurationError(JobgateError):
    """Raised when permissions, queue or registry settings are invalid."""


class GroupResolutionError(JobgateError):
    """Raised when group membership cannot be resolved for an actor."""


class RecordStoreError(JobgateError):
    """Raised when the backing record store fails to read or write."""


class ApprovalNotFoundError(JobgateError):
    """Raised by callers that require an approval request to exist."""


class JobNotFoundError(JobgateError):
    """Raised when updating a job record that does not exist."""


class DuplicateJobIdError(JobgateError):
    """Raised when a job id is already pending or in flight on a channel."""


class QueueClosedError(JobgateError):
    """Raised when publishing to or subscribing on a closed transport."""
