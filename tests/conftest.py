"""Shared test fixtures for the auth test suite."""

import os
from pathlib import Path
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env")

# Drop any vault client built before the env vars were loaded
from clients.vault_client import reset_vault_cache
reset_vault_cache()

from auth.config import AuthConfig
from auth.otp import OtpLedger
from auth.passwords import PasswordHasher
from auth.rate_limiter import LoginRateLimiter
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionRegistry
from auth.tokens import TokenIssuer
from clients.email_client import EmailGatewayClient
from helpers.fakes import FakeClock, FakeValkey, InMemoryAuthDatabase

SCHEMA_PATH = Path(__file__).parent.parent / "sql" / "auth_schema.sql"

TEST_JWT_SECRET = "test-signing-secret-that-is-long-enough-0123456789"


# =============================================================================
# CORE FIXTURES (in-memory)
# =============================================================================


@pytest.fixture
def clock():
    """Fake clock starting at a fixed UTC instant."""
    return FakeClock()


@pytest.fixture
def config():
    """Default config with the cheapest bcrypt cost so tests stay fast."""
    return AuthConfig(otp_hash_rounds=4, password_hash_rounds=4)


@pytest.fixture
def auth_db():
    return InMemoryAuthDatabase()


@pytest.fixture
def valkey(clock):
    return FakeValkey(clock)


@pytest.fixture
def otp_ledger(auth_db, config, clock):
    return OtpLedger(auth_db, config, clock)


@pytest.fixture
def session_registry(auth_db, config, clock):
    return SessionRegistry(auth_db, config, clock)


@pytest.fixture
def jwt_secret():
    return TEST_JWT_SECRET


@pytest.fixture
def token_issuer(jwt_secret, config, clock):
    return TokenIssuer(jwt_secret, config, clock)


@pytest.fixture
def password_hasher(config):
    return PasswordHasher(rounds=config.password_hash_rounds)


@pytest.fixture
def rate_limiter(valkey, config):
    return LoginRateLimiter(valkey, config)


@pytest.fixture
def email_client():
    """Email gateway mock; inspect send_otp.call_args for delivered codes."""
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def security_logger():
    return Mock(spec=SecurityLogger)


@pytest.fixture
def auth_service(
    config,
    auth_db,
    otp_ledger,
    session_registry,
    token_issuer,
    password_hasher,
    rate_limiter,
    email_client,
    security_logger,
    clock,
):
    """AuthService wired to in-memory collaborators."""
    return AuthService(
        config=config,
        auth_db=auth_db,
        otp_ledger=otp_ledger,
        session_registry=session_registry,
        token_issuer=token_issuer,
        password_hasher=password_hasher,
        rate_limiter=rate_limiter,
        email_client=email_client,
        security_logger=security_logger,
        clock=clock,
    )


# =============================================================================
# DATABASE FIXTURES (PostgreSQL, opt-in)
# =============================================================================


@pytest.fixture(scope="session")
def pg():
    """Session-scoped PostgresClient against AUTH_TEST_DATABASE_URL, schema applied.

    Skips when the variable is unset so the suite runs without a database.
    """
    database_url = os.environ.get("AUTH_TEST_DATABASE_URL")
    if not database_url:
        pytest.skip("AUTH_TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(database_url)
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def clean_pg(pg):
    """PostgresClient with every auth table emptied."""
    pg.execute("TRUNCATE users, otps, otp_issuance, sessions, security_events CASCADE")
    yield pg
