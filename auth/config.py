"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (seconds for cooldowns,
    minutes for short-lived credentials, days for sessions) to make
    configuration intuitive. Secrets are not part of this model; they
    come from Vault (see clients.vault_client).
    """

    # One-time codes
    otp_expiry_minutes: int = Field(
        default=10,
        description="How long an issued OTP remains valid",
        ge=1,
        le=60,
    )
    otp_cooldown_seconds: int = Field(
        default=60,
        description="Minimum interval between two OTPs for the same email and purpose",
        ge=0,
        le=3600,
    )
    otp_length: int = Field(
        default=6,
        description="Number of digits in an OTP",
        ge=4,
        le=10,
    )
    otp_hash_rounds: int = Field(
        default=10,
        description="bcrypt cost factor for stored OTP hashes",
        ge=4,
        le=16,
    )

    # Passwords
    password_hash_rounds: int = Field(
        default=12,
        description="bcrypt cost factor for password hashes",
        ge=4,
        le=16,
    )

    # Tokens and sessions
    access_token_ttl_minutes: int = Field(
        default=15,
        description="Access token lifetime in minutes",
        ge=1,
        le=1440,
    )
    refresh_token_ttl_days: int = Field(
        default=30,
        description="Refresh-token session lifetime in days",
        ge=1,
        le=365,
    )

    # Login throttling
    login_rate_limit_attempts: int = Field(
        default=5,
        description="Max login attempts per email per window",
        ge=1,
        le=100,
    )
    login_rate_limit_window_seconds: int = Field(
        default=60,
        description="Login rate limit window duration",
        ge=1,
        le=3600,
    )

    # Login disclosure policy
    reveal_unverified_login: bool = Field(
        default=False,
        description=(
            "Tell a user with the correct password that their email is unverified. "
            "Off by default: a generic failure resists account enumeration."
        ),
    )

    # Store
    store_statement_timeout_ms: int = Field(
        default=5000,
        description="Per-statement timeout applied to every database connection",
        ge=100,
        le=60000,
    )

    # Application
    app_name: str = Field(
        default="Auth",
        description="Application name for notification emails",
    )
