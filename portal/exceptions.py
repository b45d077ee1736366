"""Exceptions raised while talking to the access-control portal."""


class PortalError(Exception):
    """Base class for portal protocol failures."""


class PortalTransportError(PortalError):
    """Network-level failure (connection error, timeout)."""


class AuthenticationError(PortalError):
    """No session could be obtained from the login endpoint."""


class FatalStepError(PortalError):
    """A protocol step whose failure aborts the run."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step} failed: {message}")
        self.step = step


class DegradedStepWarning(PortalError):
    """A protocol step failed but the run can continue without it."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step} failed: {message}")
        self.step = step
