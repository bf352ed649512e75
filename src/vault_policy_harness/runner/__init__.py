"""Test matrix execution."""

from vault_policy_harness.runner.matrix import MatrixRunner, RunConfig

__all__ = ["MatrixRunner", "RunConfig"]
