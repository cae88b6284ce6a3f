"""
auth/errors.py -- Exception taxonomy for the auth layer.

Each exception carries the client-facing message only. Internal detail is
logged where the failure happens and never reaches the response body. The
HTTP status for each class is assigned by the handlers in api/main.py.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. message is safe to show to the client."""

    message = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class Unauthenticated(AuthError):
    """No valid session behind the request. Rendered as 401."""

    message = "Authentication required"


class CsrfRejected(AuthError):
    """Missing, expired, foreign or superseded CSRF token. Rendered as 403."""

    message = "Invalid CSRF token"


class InternalFailure(AuthError):
    """Unexpected failure inside token issuance, cookie handling or verification.

    Raised with `from exc` after the original has been logged. Rendered as 500.
    """

    message = "Internal server error"
