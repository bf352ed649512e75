"""Deterministic naming of harness resources.

Every name is a pure function of its inputs so a resumed run (same run id)
finds the resources it created earlier instead of creating duplicates.
Vault names satisfy the vault naming grammar:

- 3 to 24 characters
- lowercase letters, digits and hyphens only
- starts with a letter, ends with a letter or digit
- no consecutive hyphens
"""

import hashlib
import re
import uuid
from datetime import UTC, datetime

from vault_policy_harness.core.models import Mode

VAULT_NAME_PATTERN = re.compile(r"^[a-z](?!.*--)[a-z0-9-]{1,22}[a-z0-9]$")

_MAX_SHORT_CODE_LENGTH = 6
_MAX_ASSIGNMENT_NAME_LENGTH = 64
_RUN_TOKEN_LENGTH = 6


def new_run_id(now: datetime | None = None) -> str:
    """Generate a unique, filename-safe run id.

    Args:
        now: Timestamp to embed (defaults to the current UTC time).

    Returns:
        A run id such as ``20261018-143000-1a2b3c``.
    """
    moment = now or datetime.now(UTC)
    return f"{moment.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def run_token(run_id: str) -> str:
    """Return a short lowercase hex token derived from the run id."""
    return hashlib.sha256(run_id.encode("utf-8")).hexdigest()[:_RUN_TOKEN_LENGTH]


def _slug(value: str) -> str:
    """Lowercase ``value`` and collapse everything but [a-z0-9] into single hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _mode_letter(mode: Mode) -> str:
    return mode.value[0].lower()


def is_valid_vault_name(name: str) -> bool:
    """Return True when ``name`` satisfies the vault naming grammar."""
    return bool(VAULT_NAME_PATTERN.match(name))


def _checked(name: str) -> str:
    if not is_valid_vault_name(name):
        raise ValueError(f"Generated name {name!r} violates the vault naming grammar")
    return name


def _short_code(short_code: str) -> str:
    code = _slug(short_code).replace("-", "")[:_MAX_SHORT_CODE_LENGTH]
    if not code:
        raise ValueError(f"Short code {short_code!r} has no usable characters")
    return code


def resource_name(short_code: str, mode: Mode, run_id: str, prefix: str = "kv") -> str:
    """Name of a single-purpose scenario vault.

    Args:
        short_code: Catalog short code of the scenario.
        mode: Mode the scenario runs in.
        run_id: Run identifier.
        prefix: Leading name segment.

    Returns:
        A vault name such as ``kv-sd-a-1a2b3c``.

    Raises:
        ValueError: If the inputs cannot produce a valid name.
    """
    return _checked(f"{_slug(prefix)}-{_short_code(short_code)}-{_mode_letter(mode)}-{run_token(run_id)}")


def baseline_vault_name(run_id: str) -> str:
    """Name of the fully-compliant baseline vault for a run."""
    return _checked(f"kv-base-{run_token(run_id)}")


def object_name(short_code: str, mode: Mode, run_id: str) -> str:
    """Name of a scenario secret, key or certificate inside the baseline vault."""
    return f"{_short_code(short_code)}-{_mode_letter(mode)}-{run_token(run_id)}"


def baseline_object_name(kind: str, run_id: str) -> str:
    """Name of a compliant object seeded into the baseline vault.

    Args:
        kind: Object role, e.g. ``secret``, ``rsa``, ``ec`` or ``cert``.
        run_id: Run identifier.
    """
    return f"base-{_slug(kind)}-{run_token(run_id)}"


def resource_group_name(prefix: str, run_id: str) -> str:
    """Name of the per-run resource group."""
    return f"{_slug(prefix)}-{run_token(run_id)}"


def log_workspace_name(run_id: str) -> str:
    """Name of the log analytics workspace receiving baseline vault audit logs."""
    return f"law-kvpolicy-{run_token(run_id)}"


def assignment_name(display_name: str, run_id: str) -> str:
    """Name of a temporary Deny assignment.

    Derived from the policy display name and run id so concurrent runs never
    collide in the subscription-wide assignment namespace.

    Args:
        display_name: Policy definition display name.
        run_id: Run identifier.

    Returns:
        An assignment name of at most 64 characters.
    """
    token = run_token(run_id)
    budget = _MAX_ASSIGNMENT_NAME_LENGTH - len("kvh--") - len(token)
    slug = _slug(display_name)[:budget].strip("-") or "policy"
    return f"kvh-{slug}-{token}"
