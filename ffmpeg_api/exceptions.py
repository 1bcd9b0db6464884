"""Custom exceptions for the FFmpeg API.

Every error raised while handling a request derives from FfmpegApiError and
is converted to a ``{"error": message}`` body with the matching status code
by the handlers registered in ``ffmpeg_api.main``.
"""


class FfmpegApiError(Exception):
    """Base exception for all FFmpeg API errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def headers(self) -> dict[str, str] | None:
        """Extra response headers for this error, if any."""
        return None


# =============================================================================
# Client Errors (4xx)
# =============================================================================


class ValidationError(FfmpegApiError):
    """Missing or invalid request field."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request"


class MissingInputError(ValidationError):
    """Neither a URL nor an inline payload was supplied."""

    code = "MISSING_INPUT"
    message = "Provide either 'url' or 'base64' with the media to process"

    def __init__(self, field: str | None = None):
        message = f"Required field is missing: {field}" if field else None
        super().__init__(message)


class AuthError(FfmpegApiError):
    """Missing or mismatched API key."""

    code = "UNAUTHORIZED"
    status_code = 401
    message = "Unauthorized: invalid or missing API key"


class ForbiddenPathError(FfmpegApiError):
    """Request path matches a denylisted pattern."""

    code = "FORBIDDEN"
    status_code = 403
    message = "Forbidden"


class PayloadTooLargeError(FfmpegApiError):
    """Request body exceeds the configured limit."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "Request body too large"

    def __init__(self, limit_mb: int | None = None):
        message = f"Request body exceeds {limit_mb}MB" if limit_mb else None
        super().__init__(message)


class RateLimitError(FfmpegApiError):
    """Too many requests from one client within the window."""

    code = "RATE_LIMITED"
    status_code = 429
    message = "Too many requests"

    def __init__(self, retry_after_s: float | None = None):
        self.retry_after_s = retry_after_s
        message = None
        if retry_after_s is not None:
            message = f"Too many requests, retry in {int(retry_after_s) + 1}s"
        super().__init__(message)

    def headers(self) -> dict[str, str] | None:
        if self.retry_after_s is None:
            return None
        return {"Retry-After": str(int(self.retry_after_s) + 1)}


# =============================================================================
# Processing Errors (5xx)
# =============================================================================


class FetchError(FfmpegApiError):
    """Source media could not be downloaded."""

    code = "FETCH_FAILED"
    status_code = 500
    message = "Failed to download source media"

    def __init__(self, url: str | None = None, reason: str | None = None):
        self.url = url
        if url and reason:
            message = f"Failed to download {url}: {reason}"
        elif url:
            message = f"Failed to download {url}"
        else:
            message = reason
        super().__init__(message)


class ProcessingError(FfmpegApiError):
    """The ffmpeg subprocess did not succeed."""

    code = "PROCESSING_FAILED"
    status_code = 500
    message = "FFmpeg processing failed"

    def __init__(self, exit_code: int | None = None, message: str | None = None):
        self.exit_code = exit_code
        if message is None and exit_code is not None:
            message = f"FFmpeg failed with exit code {exit_code}"
        super().__init__(message)


class ProcessingTimeoutError(ProcessingError):
    """The ffmpeg subprocess exceeded its time budget and was terminated."""

    code = "PROCESSING_TIMEOUT"
    status_code = 504
    message = "Processing timeout"

    def __init__(self, timeout_s: float | None = None):
        message = f"Processing timed out after {timeout_s:g}s" if timeout_s else None
        super().__init__(None, message)


class OperationNotImplementedError(FfmpegApiError):
    """Registered operation with no processing behind it."""

    code = "NOT_IMPLEMENTED"
    status_code = 501
    message = "Operation not implemented"

    def __init__(self, operation: str | None = None):
        message = f"Operation not implemented: {operation}" if operation else None
        super().__init__(message)


class ServiceBusyError(FfmpegApiError):
    """No processing slot became free in time."""

    code = "SERVICE_BUSY"
    status_code = 503
    message = "Server busy, try again later"
