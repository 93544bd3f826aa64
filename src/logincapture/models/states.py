"""Presentation-facing progress states for the login flow."""

from enum import Enum


class CaptureState(str, Enum):
    """Human-facing progress through the identity provider's login flow."""

    IDLE = "IDLE"
    PAGE_LOADING = "PAGE_LOADING"
    CREDENTIAL_ENTRY = "CREDENTIAL_ENTRY"
    VERIFYING = "VERIFYING"
    AUTHENTICATED = "AUTHENTICATED"


# Once reached, navigation no longer moves the progress indicator.
TERMINAL_STATES = {CaptureState.AUTHENTICATED}

PROGRESS_TEXT: dict[CaptureState, str] = {
    CaptureState.IDLE: "Log in to X",
    CaptureState.PAGE_LOADING: "Loading X...",
    CaptureState.CREDENTIAL_ENTRY: "Enter your credentials",
    CaptureState.VERIFYING: "Verifying...",
    CaptureState.AUTHENTICATED: "Login successful!",
}
