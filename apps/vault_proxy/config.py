"""
Configuration for the vault proxy.

Settings are read from ``VAULT_PROXY_*`` environment variables or a ``.env``
file. List settings take JSON, e.g. ``VAULT_PROXY_TENANT_NAMES='["tenant"]'``.

Example:
    >>> from apps.vault_proxy.config import get_settings
    >>> get_settings().vault_addr
    'https://127.0.0.1:8200'
"""

from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Vault proxy configuration.

    The store client authenticates with ``vault_token`` when it is set, and
    otherwise logs in through AppRole with ``vault_role_id``/``vault_secret_id``.
    """

    model_config = SettingsConfigDict(
        env_prefix="VAULT_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Secret store
    # ========================================================================

    vault_addr: str = Field(
        default="https://127.0.0.1:8200",
        description="Vault server URL",
    )
    vault_token: SecretStr = Field(
        default=SecretStr(""),
        description="Static Vault token (empty = use AppRole)",
    )
    vault_role_id: str = Field(default="", description="AppRole role_id")
    vault_secret_id: SecretStr = Field(default=SecretStr(""), description="AppRole secret_id")
    vault_auth_path: str = Field(default="approle", description="AppRole auth mount path")
    vault_ca_cert: str | None = Field(
        default=None,
        description="CA bundle used to verify the Vault server (None = system store)",
    )
    vault_timeout_seconds: int = Field(default=30, ge=1, le=300)

    # ========================================================================
    # Authorization
    # ========================================================================

    resource_acl_path: str = Field(
        default="configs/authorization/resource_acl.csv",
        description="Resource ACL rule file",
    )
    permission_acl_path: str = Field(
        default="configs/authorization/permission_acl.csv",
        description="Grant ACL rule file",
    )
    tenant_names: list[str] = Field(
        default_factory=list,
        description="Tenant auth mounts blacklisted for the runtime subject",
    )
    rule_reload_interval_seconds: float = Field(default=5.0, gt=0)

    # ========================================================================
    # Requests and logging
    # ========================================================================

    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Deadline for all store calls of one operation",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    service_name: str = Field(default="vault_proxy")

    @model_validator(mode="after")
    def _require_store_credentials(self) -> "Settings":
        if not self.vault_token.get_secret_value() and not (
            self.vault_role_id and self.vault_secret_id.get_secret_value()
        ):
            raise ValueError(
                "Set VAULT_PROXY_VAULT_TOKEN or both VAULT_PROXY_VAULT_ROLE_ID "
                "and VAULT_PROXY_VAULT_SECRET_ID"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance; changes to the environment require a restart."""
    return Settings()
