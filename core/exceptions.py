from typing import Optional


class PrintQueueError(Exception):
    """
    Base class for all application-specific exceptions.
    captures the original exception for debugging if needed.
    """

    code: str = "internal_error"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


# --- Domain Exceptions (Logic Failures) ---


class InvalidDimensionError(PrintQueueError):
    """
    Raised when a shape carries an explicit dimension that is not a
    positive finite number (e.g. radius=-5).
    The caller has to supply corrected input.
    """

    code = "invalid_dimension"

    def __init__(self, dimension: str, value: object):
        super().__init__(f"Dimension '{dimension}' must be a positive finite number, got {value!r}")
        self.dimension = dimension
        self.value = value


class UnsupportedShapeKindError(PrintQueueError):
    """
    Raised when a shape kind is outside the supported primitives
    (text, custom, AI placeholders or plain garbage).
    """

    code = "unsupported_shape_kind"

    def __init__(self, kind: object):
        super().__init__(f"Unsupported shape kind: {kind!r}")
        self.kind = kind


class InvalidTransitionError(PrintQueueError):
    """
    Raised when a lifecycle event is not valid for the job's current status.
    The job is left unchanged.
    """

    code = "invalid_transition"

    def __init__(self, job_id: str, status: str, event: str):
        super().__init__(f"Cannot {event} job {job_id} while it is {status}")
        self.job_id = job_id
        self.status = status
        self.event = event


class JobNotFoundError(PrintQueueError):
    """
    Raised when a Job ID doesn't exist in the store (or has expired).
    Maps to HTTP 404.
    """

    code = "not_found"


# --- Infrastructure Exceptions (System Failures) ---


class StoreUnavailableError(PrintQueueError):
    """
    Raised when a job store operation times out or the connection fails.
    Likely retryable.
    """

    code = "store_unavailable"


class UpstreamUnavailableError(PrintQueueError):
    """
    Raised when the print agent cannot reach the printer controller
    or the cloud API. The tick is skipped, no job state changes.
    """

    code = "upstream_unavailable"


class ToolpathError(PrintQueueError):
    """
    Raised when a mesh cannot be turned into printer instructions.
    The job is failed, not retried.
    """

    code = "toolpath_failed"
