"""Authentication service - orchestrates the OTP verification and session flows."""

import logging
from uuid import UUID

from pydantic import EmailStr, TypeAdapter, ValidationError

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import (
    BadRequestError,
    ConflictError,
    EmailNotVerifiedError,
    InputValidationError,
    InvalidTokenError,
    InvariantViolationError,
    RateLimitedError,
    SessionRevokedError,
    TransientError,
    UnauthorizedError,
    UserNotFoundError,
)
from auth.otp import OtpLedger
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher
from auth.rate_limiter import LoginRateLimiter
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionRegistry
from auth.tokens import TokenIssuer
from auth.types import (
    AuthenticatedUser,
    MessageResult,
    OtpPurpose,
    RegistrationResult,
    SessionInfo,
    User,
    VerificationResult,
)
from clients.email_client import EmailGatewayClient, EmailGatewayError
from utils.timezone import Clock

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"

_email_adapter = TypeAdapter(EmailStr)


def _normalize_email(email: str) -> str:
    """Strip, lowercase and validate an email address.

    Raises:
        InputValidationError: If missing or not a valid address.
    """
    if not isinstance(email, str) or not email.strip():
        raise InputValidationError("Email is required")
    _require_encodable(email, "Email")
    email = email.strip().lower()
    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        raise InputValidationError("Please provide a valid email address")
    return email


def _require_encodable(value: str, field: str) -> None:
    # Lone surrogates survive str checks but cannot be hashed or stored
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise InputValidationError(f"{field} contains invalid characters")


def _require_text(value: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{field} is required")
    _require_encodable(value, field)
    return value.strip()


def _validate_password(password: str) -> str:
    if not isinstance(password, str) or not password:
        raise InputValidationError("Password is required")
    _require_encodable(password, "Password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InputValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InputValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return password


def _as_uuid(value: UUID | str, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise InputValidationError(f"{field} must be a valid UUID")


class AuthService:
    """Orchestrates registration, email verification, login and session flows.

    Handles:
    - Registration with OTP email verification
    - Login (with per-email throttling and enumeration-safe failures)
    - Refresh-token rotation
    - Logout of one, one-by-id, or all sessions
    - Access token authentication

    Every collaborator is injected; see auth.bootstrap for production wiring.
    """

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        otp_ledger: OtpLedger,
        session_registry: SessionRegistry,
        token_issuer: TokenIssuer,
        password_hasher: PasswordHasher,
        rate_limiter: LoginRateLimiter,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        clock: Clock | None = None,
    ):
        self._config = config
        self._auth_db = auth_db
        self._otp_ledger = otp_ledger
        self._session_registry = session_registry
        self._token_issuer = token_issuer
        self._password_hasher = password_hasher
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._security_logger = security_logger
        self._clock = clock or Clock()

    def _send_verification_otp(self, user: User) -> None:
        """Issue a verification code and hand it to the email gateway.

        Raises:
            RateLimitedError: If a code was issued within the cooldown.
            EmailGatewayError: If delivery failed. The issued code stays valid.
        """
        purpose = OtpPurpose.EMAIL_VERIFICATION
        try:
            code = self._otp_ledger.issue(user.email, purpose, owner_user_id=user.id)
        except RateLimitedError as e:
            self._security_logger.log(
                SecurityEvent.OTP_RATE_LIMITED,
                email=user.email,
                user_id=user.id,
                details={"retry_after_seconds": e.retry_after_seconds},
            )
            raise

        self._security_logger.log(
            SecurityEvent.OTP_ISSUED,
            email=user.email,
            user_id=user.id,
            details={"purpose": purpose.value},
        )

        try:
            self._email_client.send_otp(
                user.email,
                code,
                purpose.value,
                expires_in_minutes=self._config.otp_expiry_minutes,
            )
        except EmailGatewayError as e:
            self._security_logger.log(
                SecurityEvent.OTP_DELIVERY_FAILED,
                email=user.email,
                user_id=user.id,
                details={"error": str(e)},
            )
            raise

    def register(self, email: str, password: str, name: str | None = None) -> RegistrationResult:
        """Create an unverified account and send its verification code.

        A failure to issue or deliver the code does not undo the
        registration; the result says so and the user can resend.

        Raises:
            InputValidationError: Malformed email or password.
            ConflictError: Email already registered.
        """
        email = _normalize_email(email)
        password = _validate_password(password)
        name = (name.strip() or None) if isinstance(name, str) else None

        if self._auth_db.get_user_by_email(email) is not None:
            raise ConflictError("User with this email already exists")

        password_hash = self._password_hasher.hash(password)
        # Unique constraint backs up the check above if two registrations race
        user = self._auth_db.create_user(email, password_hash, name, self._clock.now())

        self._security_logger.log(SecurityEvent.USER_REGISTERED, email=user.email, user_id=user.id)
        logger.info(f"User registered: {user.id}")

        try:
            self._send_verification_otp(user)
            otp_sent = True
        except (RateLimitedError, TransientError, EmailGatewayError) as e:
            logger.error(f"Failed to send verification OTP to {user.email}: {e}")
            otp_sent = False

        if otp_sent:
            message = "Registration successful. Please check your email for the verification code."
        else:
            message = (
                "Registration successful. However, there was an issue sending the "
                "verification email. Please try resending the OTP."
            )

        return RegistrationResult(message=message, email=user.email, otp_sent=otp_sent)

    def verify_email(self, email: str, otp: str) -> VerificationResult:
        """Consume a verification code and mark the email verified.

        Raises:
            InputValidationError: Malformed email or empty code.
            BadRequestError: Code invalid/expired/used, or email already verified.
            UserNotFoundError: No account for this email.
        """
        email = _normalize_email(email)
        otp = _require_text(otp, "OTP")

        if not self._otp_ledger.verify(email, otp, OtpPurpose.EMAIL_VERIFICATION):
            self._security_logger.log(
                SecurityEvent.EMAIL_VERIFICATION_FAILED,
                email=email,
                details={"reason": "invalid_otp"},
            )
            raise BadRequestError("Invalid or expired OTP")

        user = self._auth_db.get_user_by_email(email)
        if user is None:
            raise UserNotFoundError("User not found")

        if user.email_verified:
            raise BadRequestError("Email is already verified")

        user = self._auth_db.mark_email_verified(user.id, self._clock.now())
        if user is None:
            raise UserNotFoundError("User not found")

        self._security_logger.log(SecurityEvent.EMAIL_VERIFIED, email=user.email, user_id=user.id)

        # Welcome notice is a courtesy; verification already happened
        try:
            self._email_client.send_welcome(user.email, user.name, app_name=self._config.app_name)
        except EmailGatewayError as e:
            logger.warning(f"Failed to send welcome email to {user.email}: {e}")

        return VerificationResult(message="Email verified successfully", user=user)

    def resend_otp(self, email: str) -> MessageResult:
        """Issue a fresh verification code, superseding any earlier one.

        Raises:
            UserNotFoundError: No account for this email.
            BadRequestError: Already verified, or delivery failed.
            RateLimitedError: Still inside the cooldown.
        """
        email = _normalize_email(email)

        user = self._auth_db.get_user_by_email(email)
        if user is None:
            raise UserNotFoundError("User not found")

        if user.email_verified:
            raise BadRequestError("Email is already verified")

        try:
            self._send_verification_otp(user)
        except EmailGatewayError:
            raise BadRequestError("Failed to send OTP. Please try again later.")

        return MessageResult(message="OTP sent successfully. Please check your email.")

    def login(
        self,
        email: str,
        password: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthenticatedUser:
        """Check credentials and open a new session.

        Flow:
        1. Count the attempt against the per-email throttle
        2. Look up credentials (dummy hash check if absent)
        3. Verify password, then require a verified email
        4. Reset the throttle, create a session, mint an access token

        Raises:
            RateLimitedError: Too many attempts for this email.
            UnauthorizedError: Unknown email, wrong password, or unverified email.
            EmailNotVerifiedError: Unverified email with correct password, only
                when reveal_unverified_login is enabled.
        """
        email = _normalize_email(email)
        if not isinstance(password, str) or not password:
            raise InputValidationError("Password is required")

        try:
            self._rate_limiter.check_rate_limit(email)
        except RateLimitedError as e:
            self._security_logger.log(
                SecurityEvent.LOGIN_RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"retry_after_seconds": e.retry_after_seconds},
            )
            raise

        credentials = self._auth_db.get_credentials_by_email(email)

        if credentials is None:
            self._password_hasher.burn(password)
            self._log_login_failure(email, None, ip_address, user_agent, "user_not_found")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        user = credentials.user

        if not self._password_hasher.verify(password, credentials.password_hash):
            self._log_login_failure(email, user.id, ip_address, user_agent, "invalid_password")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not user.email_verified:
            self._log_login_failure(email, user.id, ip_address, user_agent, "email_not_verified")
            if self._config.reveal_unverified_login:
                raise EmailNotVerifiedError("Please verify your email before logging in")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        self._rate_limiter.reset_rate_limit(email)

        refresh_token = self._session_registry.generate_secret()
        session_id = self._session_registry.create(user.id, refresh_token, user_agent, ip_address)
        access_token = self._token_issuer.mint(user.id, user.email, user.email_verified)

        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=user.email,
            user_id=user.id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info(f"User {user.id} logged in, session {session_id}")

        return AuthenticatedUser(user=user, access_token=access_token, refresh_token=refresh_token)

    def _log_login_failure(
        self,
        email: str,
        user_id: UUID | None,
        ip_address: str | None,
        user_agent: str | None,
        reason: str,
    ) -> None:
        logger.warning(f"Login failed for {email}: {reason}")
        self._security_logger.log(
            SecurityEvent.LOGIN_FAILED,
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"reason": reason},
        )

    def refresh(
        self,
        refresh_token: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthenticatedUser:
        """Rotate a refresh token and mint a new access token.

        Once rotation commits, the presented token stops working whether
        or not the caller receives the response. The owner is loaded first,
        so a store failure before that point leaves the token usable.

        Raises:
            InvalidTokenError: Token unknown, expired, revoked, or already rotated.
            TransientError: Store unavailable.
        """
        refresh_token = _require_text(refresh_token, "Refresh token")

        owner_id = self._session_registry.owner_of(refresh_token)
        user = self._auth_db.get_user_by_id(owner_id) if owner_id is not None else None

        try:
            rotation = self._session_registry.rotate(refresh_token, user_agent, ip_address)
        except (SessionRevokedError, InvariantViolationError) as e:
            # A token that was already rotated or logged out came back
            self._security_logger.log(
                SecurityEvent.REFRESH_TOKEN_REUSE,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": type(e).__name__},
            )
            raise InvalidTokenError(INVALID_REFRESH_TOKEN) from e
        except InvalidTokenError as e:
            self._security_logger.log(
                SecurityEvent.REFRESH_FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": type(e).__name__},
            )
            raise InvalidTokenError(INVALID_REFRESH_TOKEN) from e

        if user is None or user.id != rotation.user_id:
            self._session_registry.revoke_by_secret(rotation.secret)
            raise InvalidTokenError(INVALID_REFRESH_TOKEN)

        access_token = self._token_issuer.mint(user.id, user.email, user.email_verified)

        self._security_logger.log(
            SecurityEvent.SESSION_ROTATED,
            email=user.email,
            user_id=user.id,
            session_id=rotation.session_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return AuthenticatedUser(
            user=user, access_token=access_token, refresh_token=rotation.secret
        )

    def logout(self, refresh_token: str) -> MessageResult:
        """Revoke the session behind a refresh token.

        Safe to call with an unknown or already revoked token.
        """
        refresh_token = _require_text(refresh_token, "Refresh token")

        if self._session_registry.revoke_by_secret(refresh_token):
            self._security_logger.log(SecurityEvent.SESSION_REVOKED, details={"via": "logout"})

        return MessageResult(message="Logged out successfully")

    def logout_all(self, user_id: UUID) -> MessageResult:
        """Revoke every active session for the user."""
        user_id = _as_uuid(user_id, "User ID")
        count = self._session_registry.revoke_all(user_id)

        self._security_logger.log(
            SecurityEvent.SESSIONS_REVOKED_ALL,
            user_id=user_id,
            details={"count": count},
        )
        logger.info(f"Revoked {count} sessions for user {user_id}")

        return MessageResult(message="Logged out from all devices successfully")

    def list_sessions(self, user_id: UUID) -> list[SessionInfo]:
        """Active sessions for the user, newest first."""
        return self._session_registry.list_active(_as_uuid(user_id, "User ID"))

    def revoke_session(self, user_id: UUID, session_id: UUID) -> MessageResult:
        """Revoke one of the user's own sessions.

        Raises:
            SessionNotFoundError: Unknown session or owned by another user.
        """
        user_id = _as_uuid(user_id, "User ID")
        session_id = _as_uuid(session_id, "Session ID")

        self._session_registry.revoke_one(user_id, session_id)

        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            user_id=user_id,
            session_id=session_id,
            details={"via": "revoke_session"},
        )

        return MessageResult(message="Session revoked successfully")

    def authenticate(self, access_token: str) -> User:
        """Resolve an access token to its verified user.

        Raises:
            InvalidTokenError: Bad or expired token, unknown user, or unverified email.
        """
        if not isinstance(access_token, str) or not access_token.strip():
            raise InvalidTokenError("Access token is required")

        claims = self._token_issuer.verify(access_token.strip())

        user = self._auth_db.get_user_by_id(claims.user_id)
        if user is None or not user.email_verified:
            raise InvalidTokenError("User not found or email not verified")

        return user

    def purge_expired(self) -> dict[str, int]:
        """Run the OTP and session expiry sweeps."""
        return {
            "otps": self._otp_ledger.purge_expired(),
            "sessions": self._session_registry.purge_expired(),
        }
