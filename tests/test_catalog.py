"""Tests for the bundled policy catalog and case selection."""

from pathlib import Path

import pytest

from vault_policy_harness.catalog.policy_catalog import (
    get_case,
    get_catalog,
    list_categories,
    load_catalog,
    select_cases,
)
from vault_policy_harness.core.models import Category, Mode
from vault_policy_harness.errors import ConfigurationError


class TestBundledCatalog:
    """Tests for the catalog shipped with the package."""

    def test_catalog_has_sixteen_unique_cases(self) -> None:
        """The catalog defines 16 cases with unique ids and short codes."""
        catalog = get_catalog()
        assert len(catalog) == 16
        assert len({case.id for case in catalog}) == 16
        assert len({case.short_code for case in catalog}) == 16

    def test_resource_logs_has_no_deny_mode(self) -> None:
        """Diagnostic logging cannot be denied at creation time."""
        case = get_case("resource-logs")
        assert case is not None
        assert not case.supports(Mode.DENY)
        assert case.supports(Mode.AUDIT)

    def test_object_cases_require_the_baseline(self) -> None:
        """Secret, key and certificate cases target objects in the baseline vault."""
        for case in get_catalog():
            expected = case.category in (Category.SECRETS, Category.KEYS, Category.CERTIFICATES)
            assert case.requires_resource is expected, case.id

    def test_every_case_has_a_narrative(self) -> None:
        """Report narratives are never empty."""
        for case in get_catalog():
            assert case.narrative.requirement
            assert case.narrative.next_steps

    def test_unknown_case_returns_none(self) -> None:
        """get_case returns None for ids not in the catalog."""
        assert get_case("does-not-exist") is None

    def test_categories_in_report_order(self) -> None:
        """list_categories follows the Category enum order."""
        categories = list_categories()
        assert categories == sorted(categories, key=list(Category).index)
        assert Category.KEYS in categories


class TestSelectCases:
    """Tests for select_cases."""

    def test_select_all(self) -> None:
        """select_all returns the entire catalog in order."""
        assert select_cases(select_all=True) == list(get_catalog())

    def test_explicit_ids_keep_catalog_order(self) -> None:
        """Explicit ids come back in catalog order, not argument order."""
        selected = select_cases(case_ids=["key-type", "soft-delete"])
        assert [case.id for case in selected] == ["soft-delete", "key-type"]

    def test_category_is_case_insensitive(self) -> None:
        """Category filters match regardless of case."""
        selected = select_cases(categories=["certificates"])
        assert selected
        assert all(case.category == Category.CERTIFICATES for case in selected)

    def test_unknown_id_raises(self) -> None:
        """An unknown case id is a configuration error."""
        with pytest.raises(ConfigurationError):
            select_cases(case_ids=["nope"])

    def test_unknown_category_raises(self) -> None:
        """An unknown category is a configuration error."""
        with pytest.raises(ConfigurationError):
            select_cases(categories=["Quantum"])

    def test_empty_selection_raises(self) -> None:
        """Selecting nothing is a configuration error."""
        with pytest.raises(ConfigurationError):
            select_cases()


class TestLoadCatalog:
    """Tests for catalog file validation."""

    def test_missing_policies_list_raises(self, tmp_path: Path) -> None:
        """A file without a top-level policies list is rejected."""
        path = tmp_path / "catalog.yaml"
        path.write_text("other: []\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_catalog(path)

    def test_unknown_mode_raises(self, tmp_path: Path) -> None:
        """An entry naming an unknown mode is rejected."""
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "policies:\n"
            "  - id: x\n"
            "    name: X\n"
            "    category: Keys\n"
            "    policy_identifier: abc\n"
            "    supported_modes: [Sometimes]\n"
            "    requires_resource: true\n"
            "    short_code: x\n"
            "    check: key_type\n"
            "    narrative:\n"
            "      before_state: a\n"
            "      requirement: b\n"
            "      verification_method: c\n"
            "      benefits: d\n"
            "      next_steps: e\n",
            encoding="utf-8",
        )
        with pytest.raises(ConfigurationError):
            load_catalog(path)
