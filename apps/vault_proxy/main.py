"""
Process composition for the vault proxy.

Wires settings -> secret store -> authorizer (+ rule watcher) -> lifecycle
manager -> gateway. A transport embeds the service by calling
``build_service()`` and routing requests to ``service.gateway.handle``.

Example:
    >>> service = build_service()
    >>> service.start()
    >>> service.gateway.handle("Health/Health", None, None)
    {'standby': True, 'vault': True}
    >>> service.stop()

Running ``python -m apps.vault_proxy.main`` validates configuration, loads
the rules, connects to Vault and keeps the rule watcher running until
SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import threading
from dataclasses import dataclass
from types import FrameType

from apps.vault_proxy.config import Settings, get_settings
from apps.vault_proxy.gateway import OPERATIONS, VaultProxyGateway
from libs.common.logging import configure_logging
from libs.platform.authorization import Authorizer, RuleSetWatcher
from libs.platform.secrets import SecretStore, VaultSecretStore
from libs.vault_proxy.manager import CredentialLifecycleManager

logger = logging.getLogger(__name__)


@dataclass
class VaultProxyService:
    gateway: VaultProxyGateway
    watcher: RuleSetWatcher
    store: SecretStore

    def start(self) -> None:
        self.watcher.start()

    def stop(self) -> None:
        self.watcher.stop()
        self.store.close()


def create_store(settings: Settings) -> SecretStore:
    """Vault client authenticated with the configured token or AppRole."""
    return VaultSecretStore(
        vault_url=settings.vault_addr,
        token=settings.vault_token.get_secret_value() or None,
        role_id=settings.vault_role_id or None,
        secret_id=settings.vault_secret_id.get_secret_value() or None,
        auth_path=settings.vault_auth_path,
        ca_cert=settings.vault_ca_cert,
        timeout=settings.vault_timeout_seconds,
    )


def build_service(
    settings: Settings | None = None, store: SecretStore | None = None
) -> VaultProxyService:
    """
    Build every component. Nothing starts until ``start()``.

    Raises:
        RuleSetError: rule files missing or malformed
        SecretAccessError: Vault unreachable or login rejected
    """
    settings = settings or get_settings()

    authorizer = Authorizer.from_files(
        settings.resource_acl_path,
        settings.permission_acl_path,
        settings.tenant_names,
    )
    watcher = RuleSetWatcher(authorizer, interval=settings.rule_reload_interval_seconds)

    store = store if store is not None else create_store(settings)
    manager = CredentialLifecycleManager(store)
    gateway = VaultProxyGateway(
        manager, authorizer, request_timeout=settings.request_timeout_seconds
    )

    logger.info(
        "Vault proxy built",
        extra={
            "vault_addr": settings.vault_addr,
            "backend": store.backend_name,
            "operations": len(OPERATIONS),
        },
    )
    return VaultProxyService(gateway=gateway, watcher=watcher, store=store)


def main() -> None:
    settings = get_settings()
    configure_logging(service_name=settings.service_name, log_level=settings.log_level)

    service = build_service(settings)
    service.start()

    stopping = threading.Event()

    def _shutdown(signum: int, _frame: FrameType | None) -> None:
        logger.info("Shutdown signal received", extra={"signal": signum})
        stopping.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info("Vault proxy ready", extra={"health": service.gateway.health()})
    stopping.wait()
    service.stop()


if __name__ == "__main__":
    main()
