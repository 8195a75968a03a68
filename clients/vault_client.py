"""
HashiCorp Vault access for the auth service's secrets.

AppRole login, KV v2 reads, everything under the 'auth/' path. Values are
read once per process and cached; bootstrap pulls them before any client
is constructed, so a missing secret stops startup instead of the first
request.
"""

import logging
import os
import threading
from typing import Dict

import hvac
import requests
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized, VaultError

logger = logging.getLogger(__name__)

SECRET_PREFIX = "auth"
DEFAULT_MOUNT_POINT = "secret"

# Email gateway fields, in the order EmailGatewayClient takes them
EMAIL_FIELDS = ("gateway_url", "api_key", "hmac_secret")

_lock = threading.Lock()
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


class VaultClient:
    """AppRole-authenticated reader for secrets under one path prefix."""

    def __init__(
        self,
        vault_addr: str | None = None,
        role_id: str | None = None,
        secret_id: str | None = None,
        namespace: str | None = None,
        mount_point: str | None = None,
        prefix: str = SECRET_PREFIX,
    ):
        """Connect and log in. Arguments fall back to VAULT_* environment variables.

        Raises:
            ValueError: Address or AppRole credentials missing.
            PermissionError: Vault rejected the AppRole login.
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        role_id = role_id or os.getenv("VAULT_ROLE_ID")
        secret_id = secret_id or os.getenv("VAULT_SECRET_ID")
        namespace = namespace or os.getenv("VAULT_NAMESPACE")
        self.mount_point = mount_point or os.getenv("VAULT_MOUNT_POINT", DEFAULT_MOUNT_POINT)
        self.prefix = prefix

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        if namespace:
            self.client = hvac.Client(url=self.vault_addr, namespace=namespace)
        else:
            self.client = hvac.Client(url=self.vault_addr)

        self._login(role_id, secret_id)
        logger.info(f"Vault client ready: {self.vault_addr} ({self.mount_point}/{self.prefix})")

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (VaultError, requests.RequestException) as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}") from e

        self.client.token = response["auth"]["client_token"]
        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of a KV v2 secret under the client's prefix.

        get_secret('jwt', 'secret') reads field 'secret' of 'auth/jwt'.

        Raises:
            PermissionError: Path missing or access denied.
            KeyError: Secret exists but lacks the field.
        """
        full_path = f"{self.prefix}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path,
                mount_point=self.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath as e:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}'") from e

        data = response["data"]["data"]
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{full_path}'. "
                f"Available: {', '.join(sorted(data))}"
            )
        return data[field]


def _cached_secret(path: str, field: str) -> str:
    global _vault_client_instance

    cache_key = f"{path}/{field}"
    with _lock:
        if cache_key not in _secret_cache:
            if _vault_client_instance is None:
                _vault_client_instance = VaultClient()
            _secret_cache[cache_key] = _vault_client_instance.get_secret(path, field)
        return _secret_cache[cache_key]


def reset_vault_cache() -> None:
    """Forget the shared client and every cached value (credential rotation, tests)."""
    global _vault_client_instance

    with _lock:
        _vault_client_instance = None
        _secret_cache.clear()


def get_database_url() -> str:
    """PostgreSQL connection URL."""
    return _cached_secret("database", "url")


def get_valkey_url() -> str:
    """Valkey (Redis protocol) connection URL."""
    return _cached_secret("valkey", "url")


def get_jwt_secret() -> str:
    """HS256 signing key for access tokens."""
    return _cached_secret("jwt", "secret")


def get_email_config() -> Dict[str, str]:
    """Email gateway settings, keyed to match EmailGatewayClient's arguments."""
    return {field: _cached_secret("email", field) for field in EMAIL_FIELDS}
