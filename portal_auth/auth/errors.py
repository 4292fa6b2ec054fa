"""Typed sign-in failures.

Every failure raised out of ``LoginOrchestrator.login`` is an ``AuthFailure``.
``retryable`` tells the retry shell whether another attempt may help;
``attempts`` and ``diagnostics`` are filled in by the orchestrator before the
failure reaches the caller.
"""

from typing import Dict, List, Optional


class AuthFailure(Exception):
    """Base class for all sign-in failures."""

    retryable: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.attempts: int = 0
        self.diagnostics: List = []

    @property
    def cause_name(self) -> str:
        return self.__class__.__name__

    def __str__(self) -> str:
        message = super().__str__()
        if self.attempts:
            return f"{message} (after {self.attempts} attempt{'s' if self.attempts != 1 else ''})"
        return message


class InvalidCredentials(AuthFailure):
    """The portal or the IdP rejected the account/password."""


class MfaRequired(AuthFailure):
    """The IdP requires an interactive MFA challenge. Needs manual intervention."""


class DeviceCodeExpired(AuthFailure):
    """The operator did not approve the device code before it expired."""


class ProviderUnavailable(AuthFailure):
    """The IdP could not be reached or answered with a server error."""

    retryable = True


class NavigationTimeout(AuthFailure):
    """A page navigation did not settle within its timeout."""

    retryable = True


class SessionDetached(AuthFailure):
    """The browser page, frame or context is gone; the driver must be recreated."""

    retryable = True


class VerificationFailed(AuthFailure):
    """Credentials were submitted but the browser never left the login pages."""

    retryable = True


class FieldNotFound(AuthFailure):
    """No visible control matched any descriptor for a field kind."""

    retryable = True

    def __init__(self, field_kind: str, available_controls: Optional[List[Dict[str, str]]] = None, message: str = ""):
        super().__init__(message or f"No visible control found for field '{field_kind}'")
        self.field_kind = field_kind
        self.available_controls = available_controls or []


class Cancelled(AuthFailure):
    """The orchestrator was closed while a login was in progress."""


class DriverError(AuthFailure):
    """The browser driver failed in a way not covered by another failure."""

    retryable = True
