"""Domain errors raised by the client core.

Transport and provider exceptions are translated into these at the
component boundary, so callers only ever handle ``DermaCheckError``.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class DermaCheckError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DermaCheckError):
    """Local input was rejected before any network call."""


class AuthRequiredError(DermaCheckError):
    """An anonymous submission hit the login gate."""

    def __init__(self, message: str = "Please log in to analyze images.") -> None:
        super().__init__(message)


class ConnectivityError(DermaCheckError):
    """The remote service could not be reached at all."""


class ServerError(DermaCheckError):
    """The service answered, but not with a success payload."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(DermaCheckError):
    """A single history entry could not be decoded."""


class WorkflowStateError(DermaCheckError):
    """An analysis was requested from a state that does not allow it."""


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ALREADY_REGISTERED = "already_registered"
    WEAK_PASSWORD = "weak_password"
    INVALID_EMAIL = "invalid_email"
    PENDING_CONFIRMATION = "pending_confirmation"
    GENERIC = "generic"


AUTH_ERROR_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    AuthErrorKind.ALREADY_REGISTERED: "User already exists with this email.",
    AuthErrorKind.WEAK_PASSWORD: "Password does not meet the strength requirements.",
    AuthErrorKind.INVALID_EMAIL: "Invalid email address.",
    AuthErrorKind.PENDING_CONFIRMATION: "Please check your email to confirm your account before signing in.",
    AuthErrorKind.GENERIC: "Authentication failed. Please try again.",
}


class AuthError(DermaCheckError):
    def __init__(self, kind: AuthErrorKind, message: Optional[str] = None) -> None:
        super().__init__(message or AUTH_ERROR_MESSAGES[kind])
        self.kind = kind
