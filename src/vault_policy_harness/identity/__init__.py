"""Identity resolution for the principal running the harness."""

from vault_policy_harness.identity.principal import PrincipalResolver

__all__ = ["PrincipalResolver"]
