"""Custom exceptions for the thumbreel render service.

Errors raised before a job is detached (validation, quota, queue capacity)
reach the caller directly and carry an HTTP status code. Errors raised inside
a running job are converted by the orchestrator into a failed state and an
error event.
"""

from typing import Any


class ThumbreelError(Exception):
    """Base exception for all thumbreel application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error response."""
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


# =============================================================================
# Synchronous request errors
# =============================================================================


class ValidationError(ThumbreelError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request"


class CompositionValidationError(ValidationError):
    """Malformed composition, rejected before any job is created."""

    code = "INVALID_COMPOSITION"
    message = "Invalid composition"

    def __init__(self, message: str | None = None, *, errors: list[dict[str, Any]] | None = None):
        self.errors = errors or []
        details = {"errors": self.errors} if self.errors else None
        super().__init__(message, details=details)


class QuotaExceededError(ThumbreelError):
    """The account has no render allowance left."""

    code = "QUOTA_EXCEEDED"
    status_code = 403
    message = "Quota exceeded"

    def __init__(
        self,
        message: str | None = None,
        *,
        quota_used: int | None = None,
        quota_limit: int | None = None,
    ):
        self.quota_used = quota_used
        self.quota_limit = quota_limit
        if message is None and quota_used is not None and quota_limit is not None:
            message = (
                f"Quota exceeded. You have used {quota_used}/{quota_limit} videos "
                f"this month. Please upgrade your plan."
            )
        details = None
        if quota_used is not None:
            details = {"quota_used": quota_used, "quota_limit": quota_limit}
        super().__init__(message, details=details)


class AccountNotFoundError(ThumbreelError):
    """Account not found."""

    code = "ACCOUNT_NOT_FOUND"
    status_code = 404
    message = "User not found"

    def __init__(self, user_id: str | None = None):
        message = f"User not found: {user_id}" if user_id else self.message
        super().__init__(message)


class JobNotFoundError(ThumbreelError):
    """Render job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Render job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class RenderQueueFullError(ThumbreelError):
    """The render queue is at capacity."""

    code = "RENDER_QUEUE_FULL"
    status_code = 503
    message = "Render queue is full, try again shortly"


class JobStateError(ThumbreelError):
    """Illegal render job state transition."""

    code = "INVALID_JOB_STATE"
    status_code = 409
    message = "Invalid job state transition"


# =============================================================================
# Render pipeline errors (reported through job failure)
# =============================================================================


class RenderError(ThumbreelError):
    """Base class for failures inside a running render job."""

    code = "RENDER_ERROR"
    message = "Render failed"


class RasterizeError(RenderError):
    """A single frame could not be rendered."""

    code = "RASTERIZE_ERROR"
    message = "Frame rasterization failed"

    def __init__(self, frame_index: int, reason: str | None = None):
        self.frame_index = frame_index
        message = f"Failed to render frame {frame_index}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EncodeError(RenderError):
    """Base class for encoder failures."""

    code = "ENCODE_ERROR"
    message = "Video encoding failed"


class EncodeSpawnError(EncodeError):
    """The encoder binary could not be launched."""

    code = "ENCODER_SPAWN_FAILED"
    message = "Encoder could not be started"

    def __init__(self, binary: str, reason: str | None = None):
        self.binary = binary
        message = f"Failed to start encoder '{binary}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EncodeProcessError(EncodeError):
    """The encoder ran but exited with a non-zero status."""

    code = "ENCODER_FAILED"
    message = "Encoder exited with an error"

    def __init__(self, returncode: int, diagnostic_tail: str = ""):
        self.returncode = returncode
        self.diagnostic_tail = diagnostic_tail
        message = f"Encoder exited with code {returncode}"
        if diagnostic_tail:
            message = f"{message}: {diagnostic_tail}"
        super().__init__(message)


class RenderCancelledError(RenderError):
    """The job was cancelled before it finished."""

    code = "RENDER_CANCELLED"
    message = "Render cancelled"


class RenderTimeoutError(RenderError):
    """The job exceeded its wall-clock limit."""

    code = "RENDER_TIMEOUT"
    message = "Render timed out"

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Render timed out after {timeout_s:.0f}s")
