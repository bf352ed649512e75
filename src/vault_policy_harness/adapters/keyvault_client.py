"""Key Vault data-plane REST client.

Implements IVaultDataClient. Requests go straight to each vault's URI
(``https://<name>.vault.azure.net``). Listing normalizes secrets, keys and
certificate policies into SecretInfo, KeyInfo and CertificateInfo and never
reads secret values.
"""

import base64
from datetime import UTC, datetime
from typing import Any

import httpx

from vault_policy_harness.adapters.http import RestAdapter
from vault_policy_harness.core.models import CertificateInfo, KeyInfo, SecretInfo
from vault_policy_harness.settings import Settings

VAULT_API = "7.4"

_PARAMS = {"api-version": VAULT_API}


def _expiry(attributes: dict[str, Any]) -> datetime | None:
    exp = attributes.get("exp")
    return datetime.fromtimestamp(exp, tz=UTC) if exp is not None else None


def _attributes(expires_on: datetime | None) -> dict[str, Any]:
    attributes: dict[str, Any] = {"enabled": True}
    if expires_on is not None:
        attributes["exp"] = int(expires_on.timestamp())
    return attributes


def _rsa_key_size(modulus: str | None) -> int | None:
    """Return the RSA key size in bits from a base64url modulus."""
    if not modulus:
        return None
    raw = base64.urlsafe_b64decode(modulus + "=" * (-len(modulus) % 4))
    return len(raw.lstrip(b"\x00")) * 8


def _name(identifier: str) -> str:
    """Object name from an id such as ``https://v.vault.azure.net/secrets/name[/version]``."""
    parts = identifier.rstrip("/").split("/")
    index = next(i for i, part in enumerate(parts) if part in ("secrets", "keys", "certificates"))
    return parts[index + 1]


class KeyVaultDataClient(RestAdapter):
    """Async Key Vault data-plane client.

    Args:
        settings: Harness settings (data-plane token and timeout).
        client: Optional pre-built httpx client.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__("", settings.vault_token, settings.request_timeout_seconds, client)

    @staticmethod
    def _url(vault_uri: str, path: str) -> str:
        return f"{vault_uri.rstrip('/')}/{path.lstrip('/')}"

    async def list_secrets(self, vault_uri: str) -> list[SecretInfo]:
        items = await self._paged(self._url(vault_uri, "secrets"), _PARAMS)
        return [
            SecretInfo(
                name=_name(item["id"]),
                expires_on=_expiry(item.get("attributes", {})),
                content_type=item.get("contentType"),
                enabled=item.get("attributes", {}).get("enabled", True),
            )
            for item in items
            # Certificate-backed secrets are reported under certificates.
            if not item.get("managed")
        ]

    async def list_keys(self, vault_uri: str) -> list[KeyInfo]:
        keys: list[KeyInfo] = []
        for item in await self._paged(self._url(vault_uri, "keys"), _PARAMS):
            if item.get("managed"):
                continue
            name = _name(item["kid"])
            bundle = await self._json("GET", self._url(vault_uri, f"keys/{name}"), params=_PARAMS)
            key = bundle.get("key", {})
            attributes = bundle.get("attributes", {})
            key_type = key.get("kty", "")
            keys.append(
                KeyInfo(
                    name=name,
                    key_type=key_type,
                    key_size=_rsa_key_size(key.get("n")) if key_type.startswith("RSA") else None,
                    curve=key.get("crv"),
                    expires_on=_expiry(attributes),
                    enabled=attributes.get("enabled", True),
                )
            )
        return keys

    async def list_certificates(self, vault_uri: str) -> list[CertificateInfo]:
        certificates: list[CertificateInfo] = []
        for item in await self._paged(self._url(vault_uri, "certificates"), _PARAMS):
            name = _name(item["id"])
            policy = await self._json("GET", self._url(vault_uri, f"certificates/{name}/policy"), params=_PARAMS)
            key_props = policy.get("key_props", {})
            certificates.append(
                CertificateInfo(
                    name=name,
                    validity_months=policy.get("x509_props", {}).get("validity_months"),
                    issuer=policy.get("issuer", {}).get("name"),
                    key_type=key_props.get("kty"),
                    key_size=key_props.get("key_size"),
                    curve=key_props.get("crv"),
                    lifetime_actions=tuple(
                        action.get("action", {}).get("action_type", "")
                        for action in policy.get("lifetime_actions", [])
                    ),
                    expires_on=_expiry(item.get("attributes", {})),
                )
            )
        return certificates

    async def set_secret(
        self,
        vault_uri: str,
        name: str,
        value: str,
        expires_on: datetime | None,
        content_type: str | None,
    ) -> str:
        body: dict[str, Any] = {"value": value, "attributes": _attributes(expires_on)}
        if content_type:
            body["contentType"] = content_type
        response = await self._json("PUT", self._url(vault_uri, f"secrets/{name}"), params=_PARAMS, json=body)
        return response.get("id", self._url(vault_uri, f"secrets/{name}"))

    async def create_key(
        self,
        vault_uri: str,
        name: str,
        key_type: str,
        key_size: int | None,
        curve: str | None,
        expires_on: datetime | None,
    ) -> str:
        body: dict[str, Any] = {"kty": key_type, "attributes": _attributes(expires_on)}
        if key_size is not None:
            body["key_size"] = key_size
        if curve is not None:
            body["crv"] = curve
        response = await self._json("POST", self._url(vault_uri, f"keys/{name}/create"), params=_PARAMS, json=body)
        return response.get("key", {}).get("kid", self._url(vault_uri, f"keys/{name}"))

    async def create_certificate(self, vault_uri: str, name: str, policy: dict[str, Any]) -> str:
        await self._json(
            "POST",
            self._url(vault_uri, f"certificates/{name}/create"),
            params=_PARAMS,
            json={"policy": policy},
        )
        return self._url(vault_uri, f"certificates/{name}")
