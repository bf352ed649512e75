"""Policy catalog: the static table of policies exercised by the harness.

The catalog is bundled as ``policies.yaml`` inside the package and parsed
once into immutable PolicyTestCase records. Catalog order is execution
order. This module is the single source of truth for which policies exist,
their supported modes, and their report narratives.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from vault_policy_harness.core.models import (
    Category,
    CheckKind,
    Mode,
    Narrative,
    PolicyTestCase,
)
from vault_policy_harness.errors import ConfigurationError
from vault_policy_harness.observability import get_logger

logger = get_logger(__name__)

_CATALOG_PATH = Path(__file__).parent / "policies.yaml"


def _parse_case(data: dict[str, Any]) -> PolicyTestCase:
    """Build a PolicyTestCase from one YAML entry.

    Args:
        data: Raw YAML mapping for one policy.

    Returns:
        The immutable catalog entry.

    Raises:
        ConfigurationError: If a required field is missing or has an unknown value.
    """
    try:
        narrative = data["narrative"]
        return PolicyTestCase(
            id=data["id"],
            name=data["name"],
            category=Category(data["category"]),
            policy_identifier=str(data["policy_identifier"]),
            supported_modes=frozenset(Mode(mode) for mode in data["supported_modes"]),
            requires_resource=bool(data["requires_resource"]),
            short_code=data["short_code"],
            check=CheckKind(data["check"]),
            narrative=Narrative(
                before_state=narrative["before_state"],
                requirement=narrative["requirement"],
                verification_method=narrative["verification_method"],
                benefits=narrative["benefits"],
                next_steps=narrative["next_steps"],
            ),
            deny_parameters=dict(data.get("deny_parameters") or {}),
            framework_tags=tuple(data.get("framework_tags") or ()),
            remediation_snippet=data.get("remediation_snippet", ""),
        )
    except (KeyError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid catalog entry {data.get('id', '<unknown>')!r}: {exc}"
        ) from exc


def load_catalog(path: Path = _CATALOG_PATH) -> tuple[PolicyTestCase, ...]:
    """Parse a catalog file.

    Args:
        path: YAML file with a top-level ``policies`` list.

    Returns:
        Catalog entries in file order.

    Raises:
        ConfigurationError: If the file is malformed or ids/short codes repeat.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or not isinstance(raw.get("policies"), list):
        raise ConfigurationError(f"Catalog {path} must contain a top-level 'policies' list")

    cases = tuple(_parse_case(entry) for entry in raw["policies"])

    seen_ids: set[str] = set()
    seen_codes: set[str] = set()
    for case in cases:
        if case.id in seen_ids:
            raise ConfigurationError(f"Duplicate catalog id {case.id!r}")
        if case.short_code in seen_codes:
            raise ConfigurationError(f"Duplicate catalog short code {case.short_code!r}")
        seen_ids.add(case.id)
        seen_codes.add(case.short_code)

    logger.debug("Policy catalog loaded", path=str(path), policy_count=len(cases))
    return cases


@lru_cache(maxsize=1)
def get_catalog() -> tuple[PolicyTestCase, ...]:
    """Return the bundled catalog, parsed once per process."""
    return load_catalog()


def get_case(case_id: str) -> PolicyTestCase | None:
    """Return a catalog entry by id, or None for unknown ids."""
    return next((case for case in get_catalog() if case.id == case_id), None)


def list_categories() -> list[Category]:
    """Return categories present in the catalog, in report order."""
    present = {case.category for case in get_catalog()}
    return [category for category in Category if category in present]


def select_cases(
    case_ids: list[str] | None = None,
    categories: list[str] | None = None,
    select_all: bool = False,
    catalog: tuple[PolicyTestCase, ...] | None = None,
) -> list[PolicyTestCase]:
    """Select catalog entries by explicit ids, by category, or all.

    Results keep catalog order regardless of the order ids were given in.

    Args:
        case_ids: Explicit case ids.
        categories: Category names (case-insensitive).
        select_all: Select the whole catalog.
        catalog: Catalog to select from (defaults to the bundled one).

    Returns:
        Selected cases in catalog order.

    Raises:
        ConfigurationError: If an id or category is unknown or the selection is empty.
    """
    cases = catalog if catalog is not None else get_catalog()

    if select_all:
        selected = list(cases)
    else:
        wanted_ids = set(case_ids or [])
        known_ids = {case.id for case in cases}
        unknown_ids = wanted_ids - known_ids
        if unknown_ids:
            raise ConfigurationError(
                f"Unknown case ids: {sorted(unknown_ids)}. Known: {sorted(known_ids)}"
            )

        wanted_categories: set[Category] = set()
        for name in categories or []:
            match = next((c for c in Category if c.value.lower() == name.strip().lower()), None)
            if match is None:
                raise ConfigurationError(
                    f"Unknown category {name!r}. Known: {[c.value for c in Category]}"
                )
            wanted_categories.add(match)

        selected = [
            case
            for case in cases
            if case.id in wanted_ids or case.category in wanted_categories
        ]

    if not selected:
        raise ConfigurationError(
            "Selection is empty: pass case ids, categories, or select all"
        )
    return selected
