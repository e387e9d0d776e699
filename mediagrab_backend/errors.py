from __future__ import annotations

from typing import Optional


class MediaGrabError(Exception):
    """Base error; carries the HTTP status the API layer should answer with."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(MediaGrabError):
    status_code = 400


class NotFoundError(MediaGrabError):
    status_code = 404


class NoMediaFoundError(NotFoundError):
    pass


class ProviderError(MediaGrabError):
    status_code = 500


class ProviderUnavailableError(ProviderError):
    """No backing service is configured for the provider."""

    status_code = 501


class ProviderMisconfiguredError(ProviderError):
    """A backing service is configured but rejects us or cannot be addressed."""

    status_code = 503


class UpstreamTimeoutError(MediaGrabError):
    status_code = 504


class ProviderTimeoutError(UpstreamTimeoutError):
    pass


class DownloadTimeoutError(UpstreamTimeoutError):
    def __init__(self, message: str = "Download timeout") -> None:
        super().__init__(message)


class DownloadHTTPError(MediaGrabError):
    def __init__(self, upstream_status: int) -> None:
        super().__init__(f"Failed to download media: {upstream_status}")
        self.upstream_status = upstream_status


class TooManyMediaError(MediaGrabError):
    def __init__(self, limit: int, found: int) -> None:
        super().__init__(f"Too many media files (max {limit}). Found {found}")
        self.limit = limit
        self.found = found


class FileTooLargeError(MediaGrabError):
    def __init__(self, limit_bytes: int) -> None:
        super().__init__(f"File size exceeds maximum limit of {limit_bytes // (1024 * 1024)}MB")
        self.limit_bytes = limit_bytes


class RangeNotSatisfiableError(MediaGrabError):
    status_code = 416

    def __init__(self, total_size: int) -> None:
        super().__init__("Requested range not satisfiable")
        self.total_size = total_size


class MediaDownloadError(MediaGrabError):
    """One asset of a submission failed; the whole submission fails with it."""

    def __init__(self, kind: str, cause: BaseException) -> None:
        detail = str(cause) or cause.__class__.__name__
        status = cause.status_code if isinstance(cause, MediaGrabError) else None
        super().__init__(f"Failed to download {kind}: {detail}", status_code=status)
        self.kind = kind
        self.cause = cause


def classify_failure(error: BaseException) -> tuple[int, str]:
    """Map an arbitrary fetch failure to (status, user-facing message).

    Typed errors carry their own status. Plain exceptions raised by third-party
    providers are classified by their text.
    """
    if isinstance(error, MediaGrabError):
        return error.status_code, error.message

    message = str(error) or "Failed to fetch media"
    lowered = message.lower()
    if "is not configured" in lowered or "not configured. please set" in lowered:
        return 503, "Parser service configuration error. Please check your environment variables."
    if "timeout" in lowered or "timed out" in lowered:
        return 504, "Request timed out. Please try again."
    if "no media found" in lowered:
        return 404, "No images or videos found in this post."
    if "coming soon" in lowered:
        return 501, message
    return 500, message
