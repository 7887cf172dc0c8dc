"""Authenticated caller identity taken from a verified mTLS peer certificate."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from libs.vault_proxy.errors import AuthenticationFailed


@dataclass(frozen=True)
class Identity:
    """Subject used for every authorization check, e.g. ``API`` or ``RUNTIME``."""

    subject: str


def identity_from_peer_certificate(cert: Mapping[str, Any] | None) -> Identity:
    """
    Extract the subject commonName from ``ssl.SSLSocket.getpeercert()`` output.

    The dict shape is ``{"subject": ((("commonName", "ARGO"),), ...), ...}``.
    An empty dict (unverified peer) or a missing commonName fails.

    Raises:
        AuthenticationFailed: no verified certificate or no commonName
    """
    if not cert:
        raise AuthenticationFailed("can not find user info in client keypair")

    for rdn in cert.get("subject", ()):
        for key, value in rdn:
            if key == "commonName" and value:
                return Identity(subject=value)

    raise AuthenticationFailed("client certificate has no commonName")
