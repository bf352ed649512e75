"""Microsoft Graph client for principal lookups.

Implements IDirectoryClient. Token claims are decoded without signature
verification; they only pick which lookup to try and are never trusted for
authorization.
"""

import base64
import json
from typing import Any

import httpx

from vault_policy_harness.adapters.http import RestAdapter
from vault_policy_harness.errors import ResourceNotFoundError
from vault_policy_harness.settings import Settings


def decode_token_claims(token: str) -> dict[str, Any]:
    """Return the payload of a JWT without verifying it, or {} if malformed."""
    parts = token.split(".")
    if len(parts) < 2:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except ValueError:
        return {}
    return claims if isinstance(claims, dict) else {}


def _quote(value: str) -> str:
    return value.replace("'", "''")


class GraphDirectoryClient(RestAdapter):
    """Async Microsoft Graph client.

    Args:
        settings: Harness settings (Graph endpoint and tokens).
        client: Optional pre-built httpx client.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings.graph_endpoint, settings.graph_token, settings.request_timeout_seconds, client)
        self._management_token = settings.arm_token

    def get_token_claims(self) -> dict[str, Any]:
        return decode_token_claims(self._management_token)

    async def get_signed_in_user(self) -> dict[str, Any] | None:
        return await self._get_or_none("/v1.0/me")

    async def find_user(self, identifier: str) -> dict[str, Any] | None:
        """Look up a user by UPN or mail; a ``#EXT#`` prefix matches guest accounts."""
        quoted = _quote(identifier)
        if "#EXT#" in identifier:
            query = f"startswith(userPrincipalName,'{quoted}')"
        else:
            query = f"userPrincipalName eq '{quoted}' or mail eq '{quoted}'"
        try:
            body = await self._json("GET", "/v1.0/users", params={"$filter": query, "$select": "id,userPrincipalName"})
        except ResourceNotFoundError:
            return None
        users = body.get("value", [])
        return users[0] if users else None
