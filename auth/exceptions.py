"""Typed exceptions for auth failures.

The hierarchy is closed: every outcome a caller can observe maps to exactly
one class here, and each class carries a machine-readable ``code``.
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""

    code = "AUTH_ERROR"


class BadRequestError(AuthError):
    """Request is well-formed but cannot be honored in the current state."""

    code = "INVALID_REQUEST"


class InputValidationError(BadRequestError):
    """Malformed input, rejected before it reaches the core."""

    code = "VALIDATION_ERROR"


class ConflictError(AuthError):
    """Resource already exists (duplicate registration)."""

    code = "ALREADY_EXISTS"


class NotFoundError(AuthError):
    """Referenced resource does not exist (or is not visible to the caller)."""

    code = "NOT_FOUND"


class UserNotFoundError(NotFoundError):
    """
    Email not associated with any user.

    Note: login never raises this. Absent users collapse into
    UnauthorizedError so responses don't reveal whether an email exists.
    """


class SessionNotFoundError(NotFoundError):
    """
    Session does not exist for this owner.

    Raised both for unknown ids and for sessions owned by another user,
    so existence of other users' sessions is never leaked.
    """


class UnauthorizedError(AuthError):
    """Bad credentials or an unusable token."""

    code = "NOT_AUTHENTICATED"


class EmailNotVerifiedError(UnauthorizedError):
    """Correct password but email not yet verified.

    Only raised when AuthConfig.reveal_unverified_login is enabled.
    """


class InvalidTokenError(UnauthorizedError):
    """
    Token is invalid, expired, revoked, or already used.

    Used for both access tokens and refresh tokens.
    """

    code = "INVALID_TOKEN"


class SessionExpiredError(InvalidTokenError):
    """Session has expired and user must re-authenticate."""

    code = "SESSION_EXPIRED"


class SessionRevokedError(InvalidTokenError):
    """Session was revoked (logout, rotation, or security action)."""


class InvariantViolationError(InvalidTokenError):
    """
    Store reached a state the caller's contract rules out.

    Surfaced to clients as an invalid token; logged internally as suspicious.
    """


class RotationConflictError(InvariantViolationError):
    """A concurrent rotation already consumed this refresh token."""


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    code = "RATE_LIMITED"

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class TransientError(AuthError):
    """Backing store unavailable or timed out. Safe to retry."""

    code = "SERVICE_UNAVAILABLE"
