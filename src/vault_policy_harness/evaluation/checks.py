"""Pure live compliance checks.

Each check is a pure function of already-fetched metadata and returns a
ComplianceVerdict with a human-readable reason. Object-level checks treat an
empty collection as vacuously compliant: a vault with zero secrets has no
secret lacking an expiry.

Checks are looked up through ``CHECK_TARGETS`` (what the evaluator must
fetch) and ``run_check`` (how to apply it).
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from vault_policy_harness.core.models import (
    CertificateInfo,
    CheckKind,
    ComplianceVerdict,
    KeyInfo,
    SecretInfo,
)

# What the evaluator has to fetch for each check.
TARGET_VAULT = "vault"
TARGET_DIAGNOSTICS = "diagnostics"
TARGET_SECRETS = "secrets"
TARGET_KEYS = "keys"
TARGET_CERTIFICATES = "certificates"

_AUDIT_LOG_CATEGORIES = {"auditevent"}
_AUDIT_LOG_CATEGORY_GROUPS = {"audit", "alllogs"}


@dataclass(frozen=True)
class CheckParameters:
    """Thresholds and whitelists used by object-level checks."""

    allowed_key_types: tuple[str, ...] = ("RSA", "EC")
    rsa_min_key_size: int = 3072
    allowed_ec_curves: tuple[str, ...] = ("P-256", "P-384", "P-521")
    max_certificate_validity_months: int = 12
    allowed_certificate_issuers: tuple[str, ...] = ("Self", "DigiCert", "GlobalSign")
    allowed_certificate_key_types: tuple[str, ...] = ("RSA", "EC")

    @classmethod
    def from_settings(cls, settings: Any) -> "CheckParameters":
        """Build parameters from harness Settings."""
        return cls(
            allowed_key_types=tuple(settings.allowed_key_types),
            rsa_min_key_size=settings.rsa_min_key_size,
            allowed_ec_curves=tuple(settings.allowed_ec_curves),
            max_certificate_validity_months=settings.max_certificate_validity_months,
            allowed_certificate_issuers=tuple(settings.allowed_certificate_issuers),
            allowed_certificate_key_types=tuple(settings.allowed_certificate_key_types),
        )


def _object_verdict(
    noun: str,
    total: int,
    offenders: Sequence[str],
    problem: str,
    requirement: str,
) -> ComplianceVerdict:
    """Fold per-object results into a single verdict.

    Args:
        noun: Plural object noun, e.g. "secrets".
        total: Number of objects inspected.
        offenders: Descriptions of non-compliant objects.
        problem: Phrase describing the violation, e.g. "lack an expiration date".
        requirement: Phrase describing compliance, e.g. "have an expiration date".

    Returns:
        The verdict.
    """
    if total == 0:
        return ComplianceVerdict.compliant(f"No {noun} present; nothing violates the requirement")
    if offenders:
        return ComplianceVerdict.non_compliant(
            f"{len(offenders)} of {total} {noun} {problem}: {', '.join(offenders)}"
        )
    return ComplianceVerdict.compliant(f"All {total} {noun} {requirement}")


def _normalize(values: Sequence[str]) -> set[str]:
    return {value.strip().lower() for value in values}


# ---------------------------------------------------------------------------
# Vault-level checks
# ---------------------------------------------------------------------------


def check_soft_delete(vault: dict[str, Any]) -> ComplianceVerdict:
    """Soft delete must be enabled."""
    props = vault.get("properties", {})
    if props.get("enableSoftDelete") is True:
        retention = props.get("softDeleteRetentionInDays", 90)
        return ComplianceVerdict.compliant(f"Soft delete enabled with {retention}-day retention")
    return ComplianceVerdict.non_compliant(
        f"Soft delete is not enabled (enableSoftDelete={props.get('enableSoftDelete')!r})"
    )


def check_purge_protection(vault: dict[str, Any]) -> ComplianceVerdict:
    """Purge protection must be enabled."""
    props = vault.get("properties", {})
    if props.get("enablePurgeProtection") is True:
        return ComplianceVerdict.compliant("Purge protection enabled")
    return ComplianceVerdict.non_compliant(
        f"Purge protection is not enabled (enablePurgeProtection={props.get('enablePurgeProtection')!r})"
    )


def check_rbac_model(vault: dict[str, Any]) -> ComplianceVerdict:
    """The vault must use the RBAC permission model."""
    props = vault.get("properties", {})
    if props.get("enableRbacAuthorization") is True:
        return ComplianceVerdict.compliant("RBAC permission model enabled")
    policy_count = len(props.get("accessPolicies") or [])
    return ComplianceVerdict.non_compliant(
        f"Vault uses access policies ({policy_count} defined) instead of RBAC"
    )


def check_firewall(vault: dict[str, Any]) -> ComplianceVerdict:
    """The firewall must deny by default or public network access must be disabled."""
    props = vault.get("properties", {})
    if str(props.get("publicNetworkAccess", "")).lower() == "disabled":
        return ComplianceVerdict.compliant("Public network access disabled")
    acls = props.get("networkAcls") or {}
    default_action = acls.get("defaultAction", "Allow")
    if str(default_action).lower() == "deny":
        ip_rules = len(acls.get("ipRules") or [])
        vnet_rules = len(acls.get("virtualNetworkRules") or [])
        return ComplianceVerdict.compliant(
            f"Firewall default action Deny ({ip_rules} IP rules, {vnet_rules} network rules)"
        )
    return ComplianceVerdict.non_compliant(
        f"Firewall default action is {default_action} and public network access is enabled"
    )


def check_diagnostic_logging(settings: Sequence[dict[str, Any]]) -> ComplianceVerdict:
    """At least one diagnostic setting must ship audit logs."""
    for setting in settings:
        props = setting.get("properties", setting)
        for log in props.get("logs") or []:
            if not log.get("enabled"):
                continue
            category = str(log.get("category") or "").lower()
            group = str(log.get("categoryGroup") or "").lower()
            if category in _AUDIT_LOG_CATEGORIES or group in _AUDIT_LOG_CATEGORY_GROUPS:
                return ComplianceVerdict.compliant(
                    f"Diagnostic setting {setting.get('name', '<unnamed>')!r} ships audit logs"
                )
    return ComplianceVerdict.non_compliant(
        f"None of {len(settings)} diagnostic settings ships audit logs"
    )


# ---------------------------------------------------------------------------
# Object-level checks
# ---------------------------------------------------------------------------


def check_secret_expiration(secrets: Sequence[SecretInfo]) -> ComplianceVerdict:
    offenders = [s.name for s in secrets if s.expires_on is None]
    return _object_verdict(
        "secrets", len(secrets), offenders, "lack an expiration date", "have an expiration date"
    )


def check_secret_content_type(secrets: Sequence[SecretInfo]) -> ComplianceVerdict:
    offenders = [s.name for s in secrets if not s.content_type]
    return _object_verdict(
        "secrets", len(secrets), offenders, "lack a content type", "have a content type"
    )


def check_key_expiration(keys: Sequence[KeyInfo]) -> ComplianceVerdict:
    offenders = [k.name for k in keys if k.expires_on is None]
    return _object_verdict(
        "keys", len(keys), offenders, "lack an expiration date", "have an expiration date"
    )


def check_key_types(keys: Sequence[KeyInfo], allowed: Sequence[str]) -> ComplianceVerdict:
    """Every key must be of an allowed type."""
    allowed_set = _normalize(allowed)
    offenders = [f"{k.name} ({k.key_type})" for k in keys if k.key_type.lower() not in allowed_set]
    return _object_verdict(
        "keys",
        len(keys),
        offenders,
        f"are not of an allowed type {sorted(allowed)}",
        f"are of an allowed type {sorted(allowed)}",
    )


def check_rsa_min_size(keys: Sequence[KeyInfo], min_size: int) -> ComplianceVerdict:
    """Every RSA key must be at least ``min_size`` bits; non-RSA keys are ignored."""
    rsa_keys = [k for k in keys if k.key_type.upper().startswith("RSA")]
    offenders = [
        f"{k.name} ({k.key_size or 'unknown'} bits)"
        for k in rsa_keys
        if k.key_size is None or k.key_size < min_size
    ]
    return _object_verdict(
        "RSA keys",
        len(rsa_keys),
        offenders,
        f"are smaller than {min_size} bits",
        f"are at least {min_size} bits",
    )


def check_ec_curves(keys: Sequence[KeyInfo], allowed: Sequence[str]) -> ComplianceVerdict:
    """Every EC key must use an allowed curve; non-EC keys are ignored."""
    allowed_set = _normalize(allowed)
    ec_keys = [k for k in keys if k.key_type.upper().startswith("EC")]
    offenders = [
        f"{k.name} ({k.curve or 'unknown'})"
        for k in ec_keys
        if (k.curve or "").lower() not in allowed_set
    ]
    return _object_verdict(
        "EC keys",
        len(ec_keys),
        offenders,
        f"use a curve outside {sorted(allowed)}",
        f"use a curve in {sorted(allowed)}",
    )


def check_certificate_validity(
    certificates: Sequence[CertificateInfo],
    max_months: int,
) -> ComplianceVerdict:
    offenders = [
        f"{c.name} ({c.validity_months or 'unknown'} months)"
        for c in certificates
        if c.validity_months is None or c.validity_months > max_months
    ]
    return _object_verdict(
        "certificates",
        len(certificates),
        offenders,
        f"exceed the {max_months}-month validity ceiling",
        f"are within the {max_months}-month validity ceiling",
    )


def check_certificate_issuer(
    certificates: Sequence[CertificateInfo],
    allowed: Sequence[str],
) -> ComplianceVerdict:
    allowed_set = _normalize(allowed)
    offenders = [
        f"{c.name} ({c.issuer or 'unknown'})"
        for c in certificates
        if (c.issuer or "").lower() not in allowed_set
    ]
    return _object_verdict(
        "certificates",
        len(certificates),
        offenders,
        f"were not issued by {sorted(allowed)}",
        f"were issued by {sorted(allowed)}",
    )


def check_certificate_key_types(
    certificates: Sequence[CertificateInfo],
    allowed: Sequence[str],
) -> ComplianceVerdict:
    allowed_set = _normalize(allowed)
    offenders = [
        f"{c.name} ({c.key_type or 'unknown'})"
        for c in certificates
        if (c.key_type or "").lower() not in allowed_set
    ]
    return _object_verdict(
        "certificates",
        len(certificates),
        offenders,
        f"use a key type outside {sorted(allowed)}",
        f"use a key type in {sorted(allowed)}",
    )


def check_certificate_auto_renewal(certificates: Sequence[CertificateInfo]) -> ComplianceVerdict:
    offenders = [
        c.name
        for c in certificates
        if "autorenew" not in {action.lower() for action in c.lifetime_actions}
    ]
    return _object_verdict(
        "certificates",
        len(certificates),
        offenders,
        "have no AutoRenew lifetime action",
        "have an AutoRenew lifetime action",
    )


def check_certificate_rsa_min_size(
    certificates: Sequence[CertificateInfo],
    min_size: int,
) -> ComplianceVerdict:
    rsa_certs = [c for c in certificates if (c.key_type or "").upper().startswith("RSA")]
    offenders = [
        f"{c.name} ({c.key_size or 'unknown'} bits)"
        for c in rsa_certs
        if c.key_size is None or c.key_size < min_size
    ]
    return _object_verdict(
        "RSA certificates",
        len(rsa_certs),
        offenders,
        f"are smaller than {min_size} bits",
        f"are at least {min_size} bits",
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

CHECK_TARGETS: dict[CheckKind, str] = {
    CheckKind.SOFT_DELETE: TARGET_VAULT,
    CheckKind.PURGE_PROTECTION: TARGET_VAULT,
    CheckKind.RBAC_MODEL: TARGET_VAULT,
    CheckKind.FIREWALL: TARGET_VAULT,
    CheckKind.DIAGNOSTIC_LOGGING: TARGET_DIAGNOSTICS,
    CheckKind.SECRET_EXPIRATION: TARGET_SECRETS,
    CheckKind.SECRET_CONTENT_TYPE: TARGET_SECRETS,
    CheckKind.KEY_EXPIRATION: TARGET_KEYS,
    CheckKind.KEY_TYPE: TARGET_KEYS,
    CheckKind.KEY_RSA_MIN_SIZE: TARGET_KEYS,
    CheckKind.KEY_EC_CURVE: TARGET_KEYS,
    CheckKind.CERTIFICATE_VALIDITY: TARGET_CERTIFICATES,
    CheckKind.CERTIFICATE_ISSUER: TARGET_CERTIFICATES,
    CheckKind.CERTIFICATE_KEY_TYPE: TARGET_CERTIFICATES,
    CheckKind.CERTIFICATE_AUTO_RENEWAL: TARGET_CERTIFICATES,
    CheckKind.CERTIFICATE_RSA_MIN_SIZE: TARGET_CERTIFICATES,
}

_CHECKS: dict[CheckKind, Callable[[Any, CheckParameters], ComplianceVerdict]] = {
    CheckKind.SOFT_DELETE: lambda vault, _: check_soft_delete(vault),
    CheckKind.PURGE_PROTECTION: lambda vault, _: check_purge_protection(vault),
    CheckKind.RBAC_MODEL: lambda vault, _: check_rbac_model(vault),
    CheckKind.FIREWALL: lambda vault, _: check_firewall(vault),
    CheckKind.DIAGNOSTIC_LOGGING: lambda settings, _: check_diagnostic_logging(settings),
    CheckKind.SECRET_EXPIRATION: lambda secrets, _: check_secret_expiration(secrets),
    CheckKind.SECRET_CONTENT_TYPE: lambda secrets, _: check_secret_content_type(secrets),
    CheckKind.KEY_EXPIRATION: lambda keys, _: check_key_expiration(keys),
    CheckKind.KEY_TYPE: lambda keys, p: check_key_types(keys, p.allowed_key_types),
    CheckKind.KEY_RSA_MIN_SIZE: lambda keys, p: check_rsa_min_size(keys, p.rsa_min_key_size),
    CheckKind.KEY_EC_CURVE: lambda keys, p: check_ec_curves(keys, p.allowed_ec_curves),
    CheckKind.CERTIFICATE_VALIDITY: lambda certs, p: check_certificate_validity(
        certs, p.max_certificate_validity_months
    ),
    CheckKind.CERTIFICATE_ISSUER: lambda certs, p: check_certificate_issuer(
        certs, p.allowed_certificate_issuers
    ),
    CheckKind.CERTIFICATE_KEY_TYPE: lambda certs, p: check_certificate_key_types(
        certs, p.allowed_certificate_key_types
    ),
    CheckKind.CERTIFICATE_AUTO_RENEWAL: lambda certs, _: check_certificate_auto_renewal(certs),
    CheckKind.CERTIFICATE_RSA_MIN_SIZE: lambda certs, p: check_certificate_rsa_min_size(
        certs, p.rsa_min_key_size
    ),
}


def run_check(check: CheckKind, subject: Any, params: CheckParameters) -> ComplianceVerdict:
    """Apply a live check to fetched metadata.

    Args:
        check: The check to run.
        subject: What ``CHECK_TARGETS[check]`` names: a vault dict, a list of
            diagnostic settings, or a list of secrets, keys or certificates.
        params: Check thresholds and whitelists.

    Returns:
        The verdict.
    """
    return _CHECKS[check](subject, params)
