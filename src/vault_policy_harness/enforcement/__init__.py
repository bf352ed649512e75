"""Policy definition resolution and temporary Deny enforcement."""

from vault_policy_harness.enforcement.resolver import PolicyDefinitionResolver, ResolvedPolicy
from vault_policy_harness.enforcement.scope import DeactivationReport, EnforcementScopeController

__all__ = [
    "DeactivationReport",
    "EnforcementScopeController",
    "PolicyDefinitionResolver",
    "ResolvedPolicy",
]
