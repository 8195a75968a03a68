"""Production wiring for AuthService.

Constructs every collaborator explicitly: secrets come from Vault, the
rest from AuthConfig. Nothing here is cached globally except what the
clients themselves pool (PostgreSQL connections, Vault secrets).
"""

import logging

from dotenv import load_dotenv

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.otp import OtpLedger
from auth.passwords import PasswordHasher
from auth.rate_limiter import LoginRateLimiter
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionRegistry
from auth.tokens import TokenIssuer
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_jwt_secret,
    get_valkey_url,
)
from utils.timezone import Clock

logger = logging.getLogger(__name__)


def build_auth_service(config: AuthConfig | None = None, clock: Clock | None = None) -> AuthService:
    """Build a fully wired AuthService.

    Loads a local .env (VAULT_ADDR, VAULT_ROLE_ID, VAULT_SECRET_ID) if one
    exists, then reads every secret from Vault.

    Raises:
        ValueError: If the Vault environment variables are missing.
        PermissionError: If Vault rejects the AppRole login or a secret path.
        KeyError: If a secret lacks a required field.
        TransientError: If the database pool cannot be created.
    """
    load_dotenv()

    config = config or AuthConfig()
    clock = clock or Clock()

    postgres = PostgresClient(
        get_database_url(),
        statement_timeout_ms=config.store_statement_timeout_ms,
    )
    valkey = ValkeyClient(get_valkey_url())
    email_client = EmailGatewayClient(**get_email_config())

    auth_db = AuthDatabase(postgres)

    service = AuthService(
        config=config,
        auth_db=auth_db,
        otp_ledger=OtpLedger(auth_db, config, clock),
        session_registry=SessionRegistry(auth_db, config, clock),
        token_issuer=TokenIssuer(get_jwt_secret(), config, clock),
        password_hasher=PasswordHasher(rounds=config.password_hash_rounds),
        rate_limiter=LoginRateLimiter(valkey, config),
        email_client=email_client,
        security_logger=SecurityLogger(postgres),
        clock=clock,
    )

    logger.info("Auth service initialized")
    return service
