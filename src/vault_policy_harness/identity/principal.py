"""Principal resolver: finds the object id granted vault data-plane access.

Strategies are tried in rank order and the first non-empty answer wins:

1. The configured object id (VAULT_HARNESS_PRINCIPAL_OBJECT_ID)
2. The ``oid`` claim of the management token
3. The signed-in user from the directory
4. A directory lookup by user principal name or mail
5. A directory lookup by the guest (``#EXT#``) form of that name

The result is cached for the life of the resolver.
"""

from collections.abc import Awaitable, Callable

from vault_policy_harness.core.interfaces import IDirectoryClient
from vault_policy_harness.errors import ConfigurationError, ControlPlaneError
from vault_policy_harness.observability import get_logger
from vault_policy_harness.settings import Settings

logger = get_logger(__name__)

_NAME_CLAIMS = ("upn", "unique_name", "preferred_username", "email")


def guest_principal_name(upn: str) -> str | None:
    """Return the guest-account prefix for an external user name.

    ``alice@contoso.com`` becomes ``alice_contoso.com#EXT#``; the host tenant
    suffix is unknown and matched by the directory lookup.
    """
    if "@" not in upn or "#EXT#" in upn:
        return None
    local, domain = upn.split("@", 1)
    return f"{local}_{domain}#EXT#"


class PrincipalResolver:
    """Resolve the principal object id through ranked strategies.

    Args:
        directory: Directory lookups.
        settings: Harness settings.
    """

    def __init__(self, directory: IDirectoryClient, settings: Settings) -> None:
        """Initialize the resolver.

        Args:
            directory: Directory lookups.
            settings: Harness settings.
        """
        self._directory = directory
        self._settings = settings
        self._resolved: str | None = None

    def _strategies(self) -> list[tuple[str, Callable[[], Awaitable[str | None]]]]:
        return [
            ("configured", self._from_settings),
            ("token_claim", self._from_token),
            ("signed_in_user", self._from_signed_in_user),
            ("name_lookup", self._from_name_lookup),
            ("guest_lookup", self._from_guest_lookup),
        ]

    async def resolve_principal_id(self) -> str:
        """Return the object id of the principal running the harness.

        Returns:
            The principal object id.

        Raises:
            ConfigurationError: If no strategy produced an id.
        """
        if self._resolved:
            return self._resolved

        for name, strategy in self._strategies():
            try:
                principal_id = await strategy()
            except ControlPlaneError as exc:
                logger.debug("Principal strategy failed", strategy=name, error=exc.message)
                continue
            if principal_id:
                logger.info("Principal resolved", strategy=name, principal_id=principal_id)
                self._resolved = principal_id
                return principal_id

        raise ConfigurationError(
            "Could not resolve the principal object id; set VAULT_HARNESS_PRINCIPAL_OBJECT_ID"
        )

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    async def _from_settings(self) -> str | None:
        return self._settings.principal_object_id or None

    async def _from_token(self) -> str | None:
        return self._directory.get_token_claims().get("oid")

    async def _from_signed_in_user(self) -> str | None:
        user = await self._directory.get_signed_in_user()
        return user.get("id") if user else None

    def _principal_name(self) -> str | None:
        if self._settings.principal_upn:
            return self._settings.principal_upn
        claims = self._directory.get_token_claims()
        return next((claims[claim] for claim in _NAME_CLAIMS if claims.get(claim)), None)

    async def _from_name_lookup(self) -> str | None:
        name = self._principal_name()
        if not name:
            return None
        user = await self._directory.find_user(name)
        return user.get("id") if user else None

    async def _from_guest_lookup(self) -> str | None:
        name = self._principal_name()
        guest_name = guest_principal_name(name) if name else None
        if not guest_name:
            return None
        user = await self._directory.find_user(guest_name)
        return user.get("id") if user else None
