"""Helpers for platform resource ids and policy definition ids."""

_OBJECT_COLLECTIONS = ("secrets", "keys", "certificates")


def subscription_scope(subscription_id: str) -> str:
    """Return ``/subscriptions/<id>``."""
    return f"/subscriptions/{subscription_id}"


def resource_group_scope(resource_id: str) -> str:
    """Return the resource group scope that contains ``resource_id``.

    Args:
        resource_id: Any id below ``/subscriptions/<s>/resourceGroups/<rg>``.

    Returns:
        ``/subscriptions/<s>/resourceGroups/<rg>``.

    Raises:
        ValueError: If the id does not contain a resource group segment.
    """
    parts = resource_id.strip("/").split("/")
    lowered = [part.lower() for part in parts]
    try:
        index = lowered.index("resourcegroups")
        return "/" + "/".join(parts[: index + 2])
    except (ValueError, IndexError) as exc:
        raise ValueError(f"No resource group in resource id {resource_id!r}") from exc


def resource_group_name(resource_id: str) -> str:
    """Return the resource group name from a resource id."""
    return resource_group_scope(resource_id).rsplit("/", 1)[-1]


def split_object_id(resource_id: str) -> tuple[str, str | None, str | None]:
    """Split a vault object id into its vault id, collection and object name.

    ``<vaultId>/secrets/<name>`` yields ``(<vaultId>, "secrets", <name>)``;
    a plain vault id yields ``(<vaultId>, None, None)``.
    """
    parts = resource_id.rstrip("/").split("/")
    if len(parts) >= 3 and parts[-2].lower() in _OBJECT_COLLECTIONS:
        return "/".join(parts[:-2]), parts[-2].lower(), parts[-1]
    return resource_id, None, None


def object_resource_id(vault_id: str, collection: str, name: str) -> str:
    """Return ``<vaultId>/<collection>/<name>``."""
    return f"{vault_id.rstrip('/')}/{collection}/{name}"


def definition_guid(policy_identifier: str) -> str:
    """Return the trailing GUID of a definition id, lowercased.

    Accepts a bare GUID, a provider-scoped id or a subscription-scoped id.
    """
    return policy_identifier.strip().rstrip("/").rsplit("/", 1)[-1].lower()


def is_set_definition(policy_identifier: str) -> bool:
    """Return True for a policy set (initiative) definition id."""
    return "/policysetdefinitions/" in policy_identifier.lower()
