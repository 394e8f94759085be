"""
core/errors.py -- Typed failures for authentication and access control.

Every failure carries a stable `code` (machine-readable, part of the API
contract) and an HTTP `status_code`. api/main.py registers one exception
handler for TaskTrackError that renders the standard error envelope, so route
handlers and dependencies simply raise.

Hierarchy:
  TaskTrackError
    AuthenticationRequired    401  no credential presented at all
    InvalidOrExpired          401  credential presented but rejected
      TokenInvalid                 bad signature / malformed / unknown token
      TokenExpired                 past its validity window
    CsrfMismatch              403  cookie-authenticated write without a valid X-CSRF-Token
    AccessDenied              403  authenticated, but neither owner nor collaborator
    NotFound                  404  resource does not exist

Layer rule: core/ is the kernel. This module imports nothing from the project.
"""

from __future__ import annotations


class TaskTrackError(Exception):
    """Base class for failures that map onto a structured HTTP error."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None, status_code: int | None = None) -> None:
        self.message = message or self.message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class AuthenticationRequired(TaskTrackError):
    status_code = 401
    code = "authentication_required"
    message = "Authentication required."


class InvalidOrExpired(TaskTrackError):
    status_code = 401
    code = "invalid_or_expired"
    message = "Credential is invalid or expired."


class TokenInvalid(InvalidOrExpired):
    """Signature mismatch, malformed token, or token unknown to the store."""


class TokenExpired(InvalidOrExpired):
    """Token was genuine but its validity window has passed."""


class CsrfMismatch(TaskTrackError):
    status_code = 403
    code = "csrf_mismatch"
    message = "Missing or invalid CSRF token."


class AccessDenied(TaskTrackError):
    status_code = 403
    code = "access_denied"
    message = "Access denied."


class NotFound(TaskTrackError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."
