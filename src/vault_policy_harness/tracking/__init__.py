"""Deterministic resource naming and the persisted tracking manifest."""

from vault_policy_harness.tracking.naming import (
    assignment_name,
    baseline_vault_name,
    new_run_id,
    resource_name,
)
from vault_policy_harness.tracking.store import TrackingStore

__all__ = [
    "TrackingStore",
    "assignment_name",
    "baseline_vault_name",
    "new_run_id",
    "resource_name",
]
