"""Policy definition resolver.

Catalog entries identify policies in whatever shape the source material used:
a bare GUID, a provider-scoped built-in id, a subscription-scoped custom id,
a rule inside an initiative, or a display name. The resolver maps each to a
canonical definition id, trying in order:

1. Direct lookup of the identifier as given
2. The built-in provider scope
3. The subscription scope
4. Member definitions of configured (or supplied) initiatives
5. A linear search of every visible definition by name or display name
"""

from dataclasses import dataclass, field
from typing import Any

from vault_policy_harness.core.interfaces import IPolicyClient
from vault_policy_harness.core.resource_ids import definition_guid, is_set_definition
from vault_policy_harness.errors import ControlPlaneError, ResolutionError
from vault_policy_harness.observability import get_logger
from vault_policy_harness.settings import Settings

logger = get_logger(__name__)

BUILTIN_DEFINITION_SCOPE = "/providers/Microsoft.Authorization/policyDefinitions"


@dataclass(frozen=True)
class ResolvedPolicy:
    """A policy identifier mapped to a concrete definition.

    Attributes:
        policy_identifier: The identifier as supplied.
        definition_id: Canonical definition (or set definition) id.
        display_name: Definition display name.
        declared_parameters: Parameter names the definition declares.
        is_set: True when the definition is an initiative.
        strategy: Which resolution step succeeded.
    """

    policy_identifier: str
    definition_id: str
    display_name: str
    declared_parameters: frozenset[str] = field(default_factory=frozenset)
    is_set: bool = False
    strategy: str = "direct"


def _to_resolved(
    policy_identifier: str,
    definition: dict[str, Any],
    strategy: str,
    is_set: bool = False,
) -> ResolvedPolicy:
    props = definition.get("properties", {})
    return ResolvedPolicy(
        policy_identifier=policy_identifier,
        definition_id=definition["id"],
        display_name=props.get("displayName") or definition.get("name", policy_identifier),
        declared_parameters=frozenset((props.get("parameters") or {}).keys()),
        is_set=is_set,
        strategy=strategy,
    )


class PolicyDefinitionResolver:
    """Resolve heterogeneous policy identifiers to definitions.

    Args:
        policy_client: Policy definition operations.
        settings: Harness settings (subscription and initiative ids).
    """

    def __init__(self, policy_client: IPolicyClient, settings: Settings) -> None:
        """Initialize the resolver.

        Args:
            policy_client: Policy definition operations.
            settings: Harness settings.
        """
        self._policies = policy_client
        self._settings = settings
        self._cache: dict[str, ResolvedPolicy] = {}
        self._all_definitions: list[dict[str, Any]] | None = None

    async def resolve(self, policy_identifier: str) -> ResolvedPolicy:
        """Resolve an identifier to a definition.

        Args:
            policy_identifier: GUID, resource id, reference id or display name.

        Returns:
            The resolved definition.

        Raises:
            ResolutionError: If no strategy finds a definition.
        """
        if policy_identifier in self._cache:
            return self._cache[policy_identifier]

        resolved = (
            await self._direct(policy_identifier)
            or await self._builtin(policy_identifier)
            or await self._subscription(policy_identifier)
            or await self._from_initiatives(policy_identifier)
            or await self._by_name(policy_identifier)
        )
        if resolved is None:
            raise ResolutionError(
                f"No policy definition matches {policy_identifier!r}",
                policy_identifier=policy_identifier,
            )

        logger.info(
            "Policy definition resolved",
            policy_identifier=policy_identifier,
            definition_id=resolved.definition_id,
            strategy=resolved.strategy,
        )
        self._cache[policy_identifier] = resolved
        return resolved

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    async def _get_definition(self, definition_id: str) -> dict[str, Any] | None:
        try:
            return await self._policies.get_policy_definition(definition_id)
        except ControlPlaneError as exc:
            logger.debug("Definition lookup failed", definition_id=definition_id, error=exc.message)
            return None

    async def _direct(self, policy_identifier: str) -> ResolvedPolicy | None:
        if not policy_identifier.startswith("/"):
            return None
        if is_set_definition(policy_identifier):
            try:
                definition = await self._policies.get_policy_set_definition(policy_identifier)
            except ControlPlaneError:
                definition = None
            return _to_resolved(policy_identifier, definition, "direct", is_set=True) if definition else None
        definition = await self._get_definition(policy_identifier)
        return _to_resolved(policy_identifier, definition, "direct") if definition else None

    async def _builtin(self, policy_identifier: str) -> ResolvedPolicy | None:
        if is_set_definition(policy_identifier):
            return None
        candidate = f"{BUILTIN_DEFINITION_SCOPE}/{definition_guid(policy_identifier)}"
        definition = await self._get_definition(candidate)
        return _to_resolved(policy_identifier, definition, "builtin") if definition else None

    async def _subscription(self, policy_identifier: str) -> ResolvedPolicy | None:
        if is_set_definition(policy_identifier) or not self._settings.subscription_id:
            return None
        candidate = (
            f"/subscriptions/{self._settings.subscription_id}"
            f"/providers/Microsoft.Authorization/policyDefinitions/{definition_guid(policy_identifier)}"
        )
        definition = await self._get_definition(candidate)
        return _to_resolved(policy_identifier, definition, "subscription") if definition else None

    async def _from_initiatives(self, policy_identifier: str) -> ResolvedPolicy | None:
        initiative_ids = list(self._settings.initiative_ids)
        if is_set_definition(policy_identifier) and policy_identifier not in initiative_ids:
            initiative_ids.append(policy_identifier)

        wanted = definition_guid(policy_identifier)
        for initiative_id in initiative_ids:
            try:
                initiative = await self._policies.get_policy_set_definition(initiative_id)
            except ControlPlaneError as exc:
                logger.debug("Initiative lookup failed", initiative_id=initiative_id, error=exc.message)
                continue
            if not initiative:
                continue
            for member in initiative.get("properties", {}).get("policyDefinitions", []):
                member_id = member.get("policyDefinitionId", "")
                reference_id = member.get("policyDefinitionReferenceId", "")
                if reference_id.lower() != policy_identifier.lower() and definition_guid(member_id) != wanted:
                    continue
                definition = await self._get_definition(member_id)
                if definition:
                    return _to_resolved(policy_identifier, definition, "initiative")
        return None

    async def _by_name(self, policy_identifier: str) -> ResolvedPolicy | None:
        if self._all_definitions is None:
            try:
                self._all_definitions = await self._policies.list_policy_definitions()
            except ControlPlaneError as exc:
                logger.warning("Listing policy definitions failed", error=exc.message)
                self._all_definitions = []

        wanted = policy_identifier.strip().lower()
        for definition in self._all_definitions:
            display_name = str(definition.get("properties", {}).get("displayName", "")).lower()
            if str(definition.get("name", "")).lower() == wanted or display_name == wanted:
                return _to_resolved(policy_identifier, definition, "name_search")
        return None
