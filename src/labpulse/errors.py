"""Error taxonomy for LabPulse.

Fatal errors abort a run before any report is sent:
    - AuthError: credential issuance failed
    - ExportInitError: the export job could not be started
    - ExportFailedError: the server reported the job as failed
    - ExportTimeoutError: the job did not complete within the poll bound
    - RunTimeoutError: the whole run exceeded its deadline

Recoverable errors are logged and degrade the report:
    - StreamError: one NDJSON stream failed
    - NotificationError: the report could not be delivered
"""


class LabPulseError(Exception):
    """Base exception for all LabPulse errors.

    HTTP failures carry the status, a body excerpt and the Retry-After
    delay (seconds) when the server sent one.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.retry_after = retry_after


class AuthError(LabPulseError):
    """Bearer credential could not be obtained or has expired."""


class ExportInitError(LabPulseError):
    """Bulk export kick-off was rejected or returned no status location."""


class ExportFailedError(LabPulseError):
    """Status endpoint returned a non-transient error for the job."""


class ExportTimeoutError(LabPulseError):
    """Export job did not complete within the configured bound."""


class RunTimeoutError(LabPulseError):
    """Pipeline run exceeded its overall deadline."""


class TransientPollError(LabPulseError):
    """A single status poll failed in a way that is worth retrying."""


class StreamError(LabPulseError):
    """An NDJSON stream failed while downloading or parsing.

    Args:
        message: Description of the failure
        url: The stream URL that failed
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.url = url


class NotificationError(LabPulseError):
    """Report delivery failed."""
