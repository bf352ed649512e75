"""Settings for the vault policy harness.

All settings use the VAULT_HARNESS_ prefix and cover:
- Target subscription, tenant and region
- Control-plane endpoints and bearer tokens (token acquisition is external)
- Resource naming and local artifact locations
- Bounded polling for propagation and platform evaluation
- Parameters for the live compliance checks

List-valued settings are read from the environment as JSON arrays, e.g.
VAULT_HARNESS_ALLOWED_KEY_TYPES='["RSA", "EC"]'.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the vault policy harness.

    Environment variable prefix: VAULT_HARNESS_
    """

    service_name: str = "vault-policy-harness"

    # -------------------------------------------------------------------------
    # Target environment
    # -------------------------------------------------------------------------

    subscription_id: str = Field(
        default="",
        description="Subscription that hosts test resources and temporary Deny assignments.",
    )
    tenant_id: str = Field(
        default="",
        description="Directory tenant id written into vault properties.",
    )
    location: str = Field(
        default="eastus",
        description="Region for every provisioned resource.",
    )
    resource_group_prefix: str = Field(
        default="rg-kvpolicy",
        description="Prefix for the per-run resource group name.",
    )
    initiative_ids: list[str] = Field(
        default_factory=list,
        description="Policy set definitions searched when a rule id cannot be resolved directly.",
    )

    # -------------------------------------------------------------------------
    # Control-plane endpoints and credentials
    # -------------------------------------------------------------------------

    arm_endpoint: str = Field(
        default="https://management.azure.com",
        description="Resource Manager base URL.",
    )
    graph_endpoint: str = Field(
        default="https://graph.microsoft.com",
        description="Microsoft Graph base URL used for principal lookups.",
    )
    arm_token: str = Field(default="", description="Bearer token for Resource Manager.")
    vault_token: str = Field(default="", description="Bearer token for the Key Vault data plane.")
    graph_token: str = Field(default="", description="Bearer token for Microsoft Graph.")
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single REST request.",
    )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    principal_object_id: str = Field(
        default="",
        description="Explicit object id granted Key Vault Administrator. Skips principal lookup.",
    )
    principal_upn: str = Field(
        default="",
        description="User principal name or mail used by the lookup strategies.",
    )
    client_ip_ranges: list[str] = Field(
        default_factory=list,
        description="CIDR ranges allowed through the baseline vault firewall (the runner's egress IP).",
    )

    # -------------------------------------------------------------------------
    # Local artifacts
    # -------------------------------------------------------------------------

    output_dir: Path = Field(
        default=Path("results"),
        description="Directory for per-run results.json and report.md.",
    )
    tracking_dir: Path = Field(
        default=Path(".tracking"),
        description="Directory for tracking manifests.",
    )

    # -------------------------------------------------------------------------
    # Bounded polling
    # -------------------------------------------------------------------------

    resource_ready_attempts: int = Field(
        default=30,
        description="Polls while waiting for a vault to reach provisioningState Succeeded.",
    )
    resource_ready_interval_seconds: float = Field(default=10.0)
    permission_propagation_delay_seconds: float = Field(
        default=30.0,
        description="Wait before the single retry after an authorization failure.",
    )
    assignment_visibility_interval_seconds: float = Field(default=10.0)
    assignment_visibility_timeout_seconds: float = Field(
        default=120.0,
        description="Maximum time spent waiting for temporary assignments to become readable.",
    )
    assignment_delete_attempts: int = Field(
        default=2,
        description="Attempts per assignment when releasing the Deny scope.",
    )
    deny_settle_seconds: float = Field(
        default=30.0,
        description="Wait after activating the Deny scope before the first scenario.",
    )
    compliance_settle_seconds: float = Field(
        default=60.0,
        description="Wait after triggering a platform evaluation before the first query.",
    )
    compliance_poll_interval_seconds: float = Field(default=30.0)
    compliance_max_wait_seconds: float = Field(
        default=600.0,
        description="Upper bound for one platform compliance wait.",
    )

    # -------------------------------------------------------------------------
    # Live check parameters
    # -------------------------------------------------------------------------

    allowed_key_types: list[str] = Field(default_factory=lambda: ["RSA", "EC"])
    rsa_min_key_size: int = Field(default=3072)
    allowed_ec_curves: list[str] = Field(default_factory=lambda: ["P-256", "P-384", "P-521"])
    max_certificate_validity_months: int = Field(default=12)
    allowed_certificate_issuers: list[str] = Field(default_factory=lambda: ["Self", "DigiCert", "GlobalSign"])
    allowed_certificate_key_types: list[str] = Field(default_factory=lambda: ["RSA", "EC"])

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Emit JSON log lines instead of console output.")

    model_config = SettingsConfigDict(env_prefix="VAULT_HARNESS_")
