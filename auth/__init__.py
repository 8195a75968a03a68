"""Authentication: OTP email verification, login, and refresh-token sessions.

Production wiring lives in auth.bootstrap (import it explicitly).
"""

from auth.exceptions import (
    AuthError,
    BadRequestError,
    InputValidationError,
    ConflictError,
    NotFoundError,
    UserNotFoundError,
    SessionNotFoundError,
    UnauthorizedError,
    EmailNotVerifiedError,
    InvalidTokenError,
    SessionExpiredError,
    SessionRevokedError,
    InvariantViolationError,
    RotationConflictError,
    RateLimitedError,
    TransientError,
)
from auth.types import (
    OtpPurpose,
    OtpStatus,
    SessionStatus,
    User,
    OtpRecord,
    OtpStats,
    SessionRecord,
    SessionInfo,
    AccessTokenClaims,
    RegistrationResult,
    VerificationResult,
    MessageResult,
    AuthenticatedUser,
)
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.passwords import PasswordHasher
from auth.otp import OtpLedger
from auth.session import SessionRegistry, RotationResult
from auth.tokens import TokenIssuer
from auth.rate_limiter import LoginRateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.service import AuthService
