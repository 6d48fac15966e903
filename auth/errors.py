"""
auth/errors.py -- Error taxonomy for the credential and token lifecycle.

Every error carries the HTTP status, machine-readable code and client-safe
message it maps to, so api/main.py can render all of them with one exception
handler. The auth layer itself never imports FastAPI.

Coarse vs fine errors:
  TokenNotFound / TokenPurposeMismatch / TokenExpired describe *why* a one-time
  token was rejected. AuthService collapses all three into InvalidOrExpiredToken
  before they leave the service, so a client cannot learn which tokens exist.

  InvalidCredentials is raised for both "unknown email" and "wrong password"
  with the same message -- no email enumeration through login.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every failure the auth subsystem surfaces to callers."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication request failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class ValidationError(AuthError):
    """Malformed input -- the caller's responsibility to fix."""

    code = "validation_error"
    message = "Request validation failed."


class DuplicateEmail(AuthError):
    status_code = 409
    code = "duplicate_email"
    message = "A user with this email already exists."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password."


class AlreadyVerified(AuthError):
    status_code = 409
    code = "already_verified"
    message = "Email address is already verified."


class InvalidOrExpiredToken(AuthError):
    """Boundary form of every one-time token failure."""

    code = "invalid_token"
    message = "Token is invalid or has expired."


class HashingFailure(AuthError):
    """bcrypt could not hash or compare. Unexpected; never caused by a wrong password."""

    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Token errors (session and one-time)
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class TokenInvalid(TokenError):
    """Bad signature, malformed structure, or missing claims."""

    message = "Token is invalid."


class TokenExpired(TokenError):
    message = "Token has expired."


class TokenNotFound(TokenError):
    """No one-time token with this value exists (never issued or already consumed)."""

    message = "Token not found."


class TokenPurposeMismatch(TokenError):
    message = "Token was issued for a different purpose."
