"""Exception types shared by the service layer and route handlers."""

from __future__ import annotations


class BingeBoardError(Exception):
    """Base class for errors raised by BingeBoard services."""


class NotFoundError(BingeBoardError):
    """The resource is absent or not visible to the caller.

    Absent and private resources share this outcome.
    """


class ConflictError(BingeBoardError):
    """A uniqueness constraint (username, email) would be violated."""


class UpstreamError(BingeBoardError):
    """A store, catalog or AI provider call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class IdentityResolutionError(UpstreamError):
    """The login identifier could not be resolved because a lookup failed."""

    def __init__(self, message: str = "Could not resolve login."):
        super().__init__(message)


class RateLimitExceeded(BingeBoardError):
    """Too many recommendation requests in the current window.

    This is an expected outcome; the caller may retry once the window
    rolls over.
    """
