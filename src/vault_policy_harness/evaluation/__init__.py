"""Compliance evaluation: pure live checks and the platform-backed evaluator."""

from vault_policy_harness.evaluation.checks import CheckParameters, run_check
from vault_policy_harness.evaluation.evaluator import (
    ComplianceEvaluator,
    audit_outcome,
    compliance_outcome,
)

__all__ = [
    "CheckParameters",
    "ComplianceEvaluator",
    "audit_outcome",
    "compliance_outcome",
    "run_check",
]
