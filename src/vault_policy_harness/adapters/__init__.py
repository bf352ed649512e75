"""httpx REST adapters implementing the control-plane protocols."""

from vault_policy_harness.adapters.arm_client import ArmClient
from vault_policy_harness.adapters.graph_client import GraphDirectoryClient
from vault_policy_harness.adapters.keyvault_client import KeyVaultDataClient

__all__ = ["ArmClient", "GraphDirectoryClient", "KeyVaultDataClient"]
