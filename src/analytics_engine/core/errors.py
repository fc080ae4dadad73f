"""Exception hierarchy shared by the compiler, executor, renderers and job manager."""


class AnalyticsError(Exception):
    """Base class for all analytics engine errors."""


class ValidationError(AnalyticsError, ValueError):
    """A query definition, parameter set or export request is malformed.

    Raised before any side effect happens and never retried.
    """


class InvalidArgumentError(ValidationError):
    """A call argument is out of range (e.g. page number below 1)."""


class UnsupportedFormatError(ValidationError):
    """No renderer exists for the requested export format."""

    def __init__(self, output_format: str) -> None:
        self.output_format = output_format
        super().__init__(f"Unsupported export format: {output_format}")


class NotFoundError(AnalyticsError):
    """A saved query or export job does not exist."""

    def __init__(self, resource: str, identifier: object) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class QueryExecutionError(AnalyticsError):
    """The warehouse failed to execute a compiled query.

    Retryable by the caller; never retried internally.
    """


class QueryTimeoutError(QueryExecutionError, TimeoutError):
    """The warehouse did not answer within the allowed time."""


class CacheError(AnalyticsError):
    """The cache store failed. Always logged and bypassed by callers."""


class RenderError(AnalyticsError):
    """A renderer could not produce its artifact."""


class AlreadyProcessingError(AnalyticsError):
    """An export job could not be claimed because it is no longer pending."""

    def __init__(self, job_id: object, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Export job {job_id} cannot be processed (status={status})")
