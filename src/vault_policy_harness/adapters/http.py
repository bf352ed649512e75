"""Shared httpx plumbing for the REST adapters.

Provider error payloads share one shape::

    {"error": {"code": "...", "message": "...", "innererror": {"code": "..."}}}

``raise_for_response`` maps them onto the harness error taxonomy:

- RequestDisallowedByPolicy / ForbiddenByPolicy -> RequestDisallowedByPolicyError
- 401, 403 and authorization codes              -> AuthorizationFailedError
- 404                                           -> ResourceNotFoundError
- anything else non-2xx                         -> ControlPlaneError
"""

from typing import Any

import httpx

from vault_policy_harness.errors import (
    AuthorizationFailedError,
    ControlPlaneError,
    RequestDisallowedByPolicyError,
    ResourceNotFoundError,
)
from vault_policy_harness.observability import get_logger

logger = get_logger(__name__)

_POLICY_CODES = {"requestdisallowedbypolicy", "forbiddenbypolicy"}
_AUTHORIZATION_CODES = {
    "authorizationfailed",
    "linkedauthorizationfailed",
    "forbidden",
    "unauthorized",
    "invalidauthenticationtoken",
}


def _error_codes(response: httpx.Response) -> tuple[str | None, str | None, str]:
    """Return (code, inner code, message) from a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return None, None, response.text[:300]
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None, None, response.text[:300]
    inner = error.get("innererror") or error.get("innerError") or {}
    inner_code = inner.get("code") if isinstance(inner, dict) else None
    return error.get("code"), inner_code, error.get("message", response.text[:300])


def raise_for_response(response: httpx.Response) -> None:
    """Raise the mapped harness error for a non-2xx response.

    Raises:
        RequestDisallowedByPolicyError: If a policy assignment blocked the request.
        AuthorizationFailedError: On authorization-class failures.
        ResourceNotFoundError: On 404.
        ControlPlaneError: On any other non-2xx status.
    """
    if response.is_success:
        return

    code, inner_code, message = _error_codes(response)
    codes = {c.lower() for c in (code, inner_code) if c}
    status = response.status_code
    text = f"{response.request.method} {response.request.url.path} failed with {status}: {message}"

    if codes & _POLICY_CODES:
        raise RequestDisallowedByPolicyError(text, status_code=status, code=code)
    if status in (401, 403) or codes & _AUTHORIZATION_CODES:
        raise AuthorizationFailedError(text, status_code=status, code=code)
    if status == 404:
        raise ResourceNotFoundError(text, status_code=status, code=code)
    raise ControlPlaneError(text, status_code=status, code=code)


class RestAdapter:
    """Base for bearer-token REST adapters.

    Args:
        base_url: Service base URL.
        token: Bearer token (acquired outside the harness).
        timeout_seconds: Per-request timeout.
        client: Pre-built client, e.g. one using ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            base_url: Service base URL.
            token: Bearer token.
            timeout_seconds: Per-request timeout.
            client: Optional pre-built client.
        """
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RestAdapter":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send a request and map failures.

        Raises:
            ControlPlaneError: Or a subclass, for transport errors and non-2xx responses.
        """
        try:
            response = await self._client.request(method, url, params=params, json=json, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise ControlPlaneError(f"{method} {url} timed out") from exc
        except httpx.RequestError as exc:
            raise ControlPlaneError(f"{method} {url} request error: {exc}") from exc

        if not response.is_success:
            logger.debug(
                "Provider request failed",
                method=method,
                url=url,
                status_code=response.status_code,
                body=response.text[:500],
            )
        raise_for_response(response)
        return response

    async def _json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        response = await self._request(method, url, params=params, json=json)
        if not response.content:
            return {}
        return response.json()

    async def _get_or_none(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        try:
            return await self._json("GET", url, params=params)
        except ResourceNotFoundError:
            return None

    async def _paged(self, url: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Collect ``value`` items across ``nextLink`` pages."""
        items: list[dict[str, Any]] = []
        body = await self._json("GET", url, params=params)
        items.extend(body.get("value", []))
        while body.get("nextLink"):
            body = await self._json("GET", body["nextLink"])
            items.extend(body.get("value", []))
        return items
