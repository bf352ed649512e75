"""Provisioning, reuse and teardown of harness resources."""

from vault_policy_harness.lifecycle.manager import ResourceLifecycleManager

__all__ = ["ResourceLifecycleManager"]
