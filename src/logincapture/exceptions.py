"""Login-capture exception hierarchy.

Nothing inside the capture core raises these into the browsing context;
they surface only at host-facing seams (session store, CLI, ``wait``).
"""

from __future__ import annotations


class LoginCaptureError(Exception):
    """Base exception for all login-capture errors."""


class InvalidTokenError(LoginCaptureError):
    """Raised when a completion token is missing its session marker or CSRF token."""


class InvalidUsernameError(LoginCaptureError):
    """Raised when a manually entered handle does not have a valid shape.

    Attributes:
        username: The rejected input.
    """

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Invalid username: {username!r}")


class CaptureTimeoutError(LoginCaptureError):
    """Raised when a capture run does not complete within the allotted time.

    Attributes:
        timeout: Seconds waited before giving up.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Login was not completed within {timeout:.0f}s")


class SessionExpiredError(LoginCaptureError):
    """Raised when a stored session is older than the configured timeout."""


class CaptureClosedError(LoginCaptureError):
    """Raised when the capture run is torn down before the login completed.

    Typically the user closed the login window.
    """

    def __init__(self, message: str = "Login window was closed before sign-in completed") -> None:
        super().__init__(message)
