"""Domain models for the vault policy harness.

Enumerations:
- Mode            : Audit | Deny | Compliance
- Outcome         : Pass | Fail | Error | Skipped
- Category        : grouping used by selection and reports
- ResourceKind    : kinds of tracked cloud resources
- CheckKind       : live checks understood by the compliance evaluator
- ComplianceState : Compliant | NonCompliant | Pending | Unknown

Catalog and transient values are frozen dataclasses. Everything written to
disk (tracking manifest, result set) is a pydantic model serialized with
camelCase keys so the artifact schema stays stable across processes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Mode(StrEnum):
    """Enforcement mode a scenario is exercised in."""

    AUDIT = "Audit"
    DENY = "Deny"
    COMPLIANCE = "Compliance"


# Phases always execute in this order; Deny last so the elevated scope is short-lived.
MODE_ORDER: tuple[Mode, ...] = (Mode.COMPLIANCE, Mode.AUDIT, Mode.DENY)


class Outcome(StrEnum):
    """Recorded outcome of one scenario."""

    PASS = "Pass"
    FAIL = "Fail"
    ERROR = "Error"
    SKIPPED = "Skipped"


class Category(StrEnum):
    """Policy category, in report order."""

    DATA_PROTECTION = "Data Protection"
    ACCESS_CONTROL = "Access Control"
    NETWORK_ISOLATION = "Network Isolation"
    LOGGING = "Logging"
    SECRETS = "Secrets"
    KEYS = "Keys"
    CERTIFICATES = "Certificates"


class ResourceKind(StrEnum):
    """Kinds of cloud resources recorded in the tracking manifest."""

    RESOURCE_GROUP = "ResourceGroup"
    VAULT = "Vault"
    LOG_WORKSPACE = "LogWorkspace"


class CheckKind(StrEnum):
    """Live checks the compliance evaluator can run."""

    SOFT_DELETE = "soft_delete"
    PURGE_PROTECTION = "purge_protection"
    RBAC_MODEL = "rbac_model"
    FIREWALL = "firewall"
    DIAGNOSTIC_LOGGING = "diagnostic_logging"
    SECRET_EXPIRATION = "secret_expiration"
    SECRET_CONTENT_TYPE = "secret_content_type"
    KEY_EXPIRATION = "key_expiration"
    KEY_TYPE = "key_type"
    KEY_RSA_MIN_SIZE = "key_rsa_min_size"
    KEY_EC_CURVE = "key_ec_curve"
    CERTIFICATE_VALIDITY = "certificate_validity"
    CERTIFICATE_ISSUER = "certificate_issuer"
    CERTIFICATE_KEY_TYPE = "certificate_key_type"
    CERTIFICATE_AUTO_RENEWAL = "certificate_auto_renewal"
    CERTIFICATE_RSA_MIN_SIZE = "certificate_rsa_min_size"


class ComplianceState(StrEnum):
    """State of a compliance verdict."""

    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"
    PENDING = "Pending"
    UNKNOWN = "Unknown"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Narrative:
    """Report narrative attached to a test case.

    Attributes:
        before_state: What the environment looked like before the policy existed.
        requirement: What the policy requires.
        verification_method: How the harness verifies it.
        benefits: Why the control matters.
        next_steps: Remediation and follow-up guidance.
    """

    before_state: str
    requirement: str
    verification_method: str
    benefits: str
    next_steps: str


@dataclass(frozen=True)
class PolicyTestCase:
    """Immutable catalog entry describing one policy under test.

    Attributes:
        id: Stable case identifier used for selection.
        name: Policy display name.
        category: Report and selection category.
        policy_identifier: Policy definition id in any supported shape.
        supported_modes: Modes this policy can be exercised in.
        requires_resource: True when scenarios target objects in the baseline vault;
            False when scenarios need their own single-purpose vault.
        short_code: Short code embedded in deterministic resource names.
        check: Live check that decides Compliance-mode verdicts.
        deny_parameters: Assignment parameters (besides effect) used in Deny mode.
        framework_tags: Control framework references (CIS, MCSB, NIST).
        remediation_snippet: CLI snippet that fixes a non-compliant resource.
        narrative: Report narrative.
    """

    id: str
    name: str
    category: Category
    policy_identifier: str
    supported_modes: frozenset[Mode]
    requires_resource: bool
    short_code: str
    check: CheckKind
    narrative: Narrative
    deny_parameters: dict[str, Any] = field(default_factory=dict)
    framework_tags: tuple[str, ...] = ()
    remediation_snippet: str = ""

    def supports(self, mode: Mode) -> bool:
        """Return True when the case can run in ``mode``."""
        return mode in self.supported_modes


# ---------------------------------------------------------------------------
# Transient values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TemporaryAssignment:
    """A subscription-scope Deny assignment created for the Deny phase.

    Attributes:
        name: Deterministic assignment name.
        scope: Assignment scope (the subscription).
        assignment_id: Full platform resource id of the assignment.
        policy_identifier: The identifier from the catalog this was created for.
        definition_id: The resolved definition (or set definition) id.
    """

    name: str
    scope: str
    assignment_id: str
    policy_identifier: str
    definition_id: str


@dataclass(frozen=True)
class ComplianceVerdict:
    """Transient verdict from the compliance evaluator.

    Attributes:
        state: Compliance state. Pending and Unknown are never compliant.
        details: Human-readable evidence.
    """

    state: ComplianceState
    details: str

    @property
    def is_compliant(self) -> bool:
        """True only for the Compliant state."""
        return self.state == ComplianceState.COMPLIANT

    @property
    def is_determined(self) -> bool:
        """True when the platform or live check produced a definite answer."""
        return self.state in (ComplianceState.COMPLIANT, ComplianceState.NON_COMPLIANT)

    @classmethod
    def compliant(cls, details: str) -> "ComplianceVerdict":
        return cls(state=ComplianceState.COMPLIANT, details=details)

    @classmethod
    def non_compliant(cls, details: str) -> "ComplianceVerdict":
        return cls(state=ComplianceState.NON_COMPLIANT, details=details)

    @classmethod
    def pending(cls, details: str) -> "ComplianceVerdict":
        return cls(state=ComplianceState.PENDING, details=details)


@dataclass(frozen=True)
class SecretInfo:
    """Secret metadata from the vault data plane (never the value)."""

    name: str
    expires_on: datetime | None = None
    content_type: str | None = None
    enabled: bool = True


@dataclass(frozen=True)
class KeyInfo:
    """Key metadata from the vault data plane."""

    name: str
    key_type: str
    key_size: int | None = None
    curve: str | None = None
    expires_on: datetime | None = None
    enabled: bool = True


@dataclass(frozen=True)
class CertificateInfo:
    """Certificate policy metadata from the vault data plane.

    Attributes:
        name: Certificate name.
        validity_months: Validity period from the issuance policy.
        issuer: Issuer name from the issuance policy (Self, DigiCert, Unknown, ...).
        key_type: Key type from the key properties (RSA, RSA-HSM, EC, EC-HSM).
        key_size: RSA key size, when applicable.
        curve: EC curve name, when applicable.
        lifetime_actions: Action types from the lifetime actions (AutoRenew, EmailContacts).
        expires_on: Expiry of the current version.
    """

    name: str
    validity_months: int | None = None
    issuer: str | None = None
    key_type: str | None = None
    key_size: int | None = None
    curve: str | None = None
    lifetime_actions: tuple[str, ...] = ()
    expires_on: datetime | None = None


@dataclass
class RunSummary:
    """Aggregated counts for a run.

    Attributes:
        total: Number of recorded results.
        passed: Results with outcome Pass.
        failed: Results with outcome Fail.
        errored: Results with outcome Error.
        skipped: Results with outcome Skipped.
        success_rate: passed / total * 100, 0.0 when total is 0.
        teardown_failures: Items that could not be released.
        aborted: Whether the operator aborted the run.
    """

    total: int
    passed: int
    failed: int
    errored: int
    skipped: int
    success_rate: float
    teardown_failures: list["TeardownFailure"] = field(default_factory=list)
    aborted: bool = False


# ---------------------------------------------------------------------------
# Serialized artifacts
# ---------------------------------------------------------------------------


class _ArtifactModel(BaseModel):
    """Base for models written to disk with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class TrackedResource(_ArtifactModel):
    """A cloud resource created or adopted by the harness."""

    kind: ResourceKind = Field(description="Resource kind")
    name: str = Field(description="Deterministic resource name")
    platform_resource_id: str = Field(description="Full platform resource id")
    location: str = Field(description="Region")
    created_at: datetime = Field(description="When the resource was recorded (UTC)")


class TrackingManifest(_ArtifactModel):
    """Persisted record of the resources that exist for a run."""

    run_id: str
    timestamp: datetime
    subscription: str
    resource_group: str
    resources: list[TrackedResource] = Field(default_factory=list)


class TeardownFailure(_ArtifactModel):
    """An item the harness failed to release.

    A leaked temporary Deny assignment is a security-relevant defect and is
    always surfaced at the top of the report.
    """

    kind: str = Field(description="assignment | resource_group | manifest")
    target: str = Field(description="Name or id of the leaked item")
    error: str = Field(description="Last error observed while releasing it")


class TestResult(_ArtifactModel):
    """Outcome of one (policy, mode) scenario."""

    __test__: ClassVar[bool] = False

    timestamp: datetime
    test_name: str
    case_id: str
    category: Category
    policy_name: str
    policy_id: str
    mode: Mode
    outcome: Outcome
    details: str = ""
    error_message: str | None = None
    resource_id: str | None = Field(
        default=None,
        description="Resource evaluated; lets the regenerator re-poll platform compliance",
    )
    framework_tags: list[str] = Field(default_factory=list)
    remediation_snippet: str = ""
    before_state: str = ""
    requirement: str = ""
    verification_method: str = ""
    benefits: str = ""
    next_steps: str = ""


class ResultSet(_ArtifactModel):
    """Machine-readable result artifact for a run."""

    run_id: str
    generated_at: datetime
    subscription: str
    results: list[TestResult] = Field(default_factory=list)
    teardown_failures: list[TeardownFailure] = Field(default_factory=list)
    aborted: bool = False
