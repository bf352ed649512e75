"""Compliance test harness for Key Vault policy enforcement.

Provisions deliberately compliant and non-compliant vaults and vault objects,
temporarily assigns policies in Deny mode, and reconciles the outcome against
live resource state and the platform's asynchronous compliance evaluator.
"""

__version__ = "0.1.0"
