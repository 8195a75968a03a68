"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from utils.timezone import to_utc


class OtpPurpose(str, Enum):
    """What a one-time code proves."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class OtpStatus(str, Enum):
    """OTP record state. USED covers both consumed and superseded codes."""

    ACTIVE = "active"
    USED = "used"


class SessionStatus(str, Enum):
    """Refresh-token session state."""

    ACTIVE = "active"
    REVOKED = "revoked"


class User(BaseModel):
    """A registered user. Never carries the password hash."""

    id: UUID
    email: EmailStr
    name: str | None = None
    email_verified: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Credentials(BaseModel):
    """User plus stored password hash. Internal to the login flow."""

    user: User
    password_hash: str = Field(..., repr=False)


class OtpRecord(BaseModel):
    """A hashed one-time code awaiting verification."""

    id: UUID
    email: str
    purpose: OtpPurpose
    hashed_code: str = Field(..., repr=False)
    expires_at: datetime
    status: OtpStatus  # Required - fail closed, no default
    owner_user_id: UUID | None = None
    created_at: datetime
    used_at: datetime | None = None

    @field_validator("expires_at", "created_at", "used_at")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        """Stored timestamps come back in the connection timezone."""
        return to_utc(value) if value is not None else None

    def is_usable(self, now: datetime) -> bool:
        """Active and not past expiry."""
        return self.status is OtpStatus.ACTIVE and now < self.expires_at


class OtpStats(BaseModel):
    """Snapshot counts of the OTP table."""

    total: int
    active: int
    expired: int
    used: int


class SessionInfo(BaseModel):
    """Public view of a session. The secret hash is never included."""

    id: UUID
    user_agent: str
    ip_address: str
    created_at: datetime
    expires_at: datetime


class SessionRecord(BaseModel):
    """A persisted refresh-token session."""

    id: UUID
    hashed_secret: str = Field(..., repr=False)
    user_id: UUID
    expires_at: datetime
    status: SessionStatus  # Required - fail closed, no default
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime
    revoked_at: datetime | None = None
    replaced_by: UUID | None = None

    @field_validator("expires_at", "created_at", "revoked_at")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None

    def to_info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            user_agent=self.user_agent or "Unknown",
            ip_address=self.ip_address or "Unknown",
            created_at=self.created_at,
            expires_at=self.expires_at,
        )


class AccessTokenClaims(BaseModel):
    """Decoded, verified access token."""

    user_id: UUID
    email: EmailStr
    email_verified: bool
    issued_at: datetime
    expires_at: datetime


class RegistrationResult(BaseModel):
    """Returned by register. otp_sent is False when delivery failed."""

    message: str
    email: EmailStr
    otp_sent: bool


class VerificationResult(BaseModel):
    """Returned by verify_email."""

    message: str
    user: User


class MessageResult(BaseModel):
    """Plain acknowledgement."""

    message: str


class AuthenticatedUser(BaseModel):
    """User info and credentials returned after login or refresh."""

    user: User
    access_token: str
    refresh_token: str = Field(..., repr=False)
