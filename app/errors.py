"""Error taxonomy shared by the addon and configuration surfaces."""

from __future__ import annotations


class AddonError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class UpstreamError(AddonError):
    """Transient upstream failure that survived every retry.

    ``status`` is the last HTTP status seen, or ``None`` when the request never
    produced a response (connection refused, reset or timed out).
    """

    status_code = 502

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_network_error(self) -> bool:
        return self.status is None


class UpstreamRejected(AddonError):
    """Non-retryable 4xx answer from the upstream API."""

    def __init__(self, message: str, *, status: int) -> None:
        super().__init__(message, status_code=status if status in {401, 404} else 400)
        self.status = status


class InvalidFilterError(AddonError):
    status_code = 400


class NotFoundError(AddonError):
    status_code = 404


class AccessDenied(AddonError):
    status_code = 403
