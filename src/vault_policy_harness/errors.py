"""Error taxonomy for the vault policy harness.

Errors fall into two groups:

- Harness errors describing what went wrong in the orchestration itself
  (configuration, provisioning, resolution, propagation, teardown).
- Control-plane errors raised by the REST adapters and mapped from provider
  error codes so callers can branch on authorization and policy denials
  without inspecting HTTP payloads.

Only ConfigurationError halts a run. Every other error is caught at the
matrix runner's per-case boundary and recorded as an outcome.
"""


class HarnessError(Exception):
    """Base error for all harness failures.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize HarnessError.

        Args:
            message: Error description.
        """
        super().__init__(message)
        self.message = message


class ConfigurationError(HarnessError):
    """Raised for an empty or invalid selection or a missing required setting.

    Fatal: raised before any resource is touched.
    """


class ProvisioningError(HarnessError):
    """Raised when a resource or vault object could not be created or updated."""


class ResolutionError(HarnessError):
    """Raised when a policy identifier cannot be mapped to a definition.

    Attributes:
        policy_identifier: The identifier exactly as supplied.
    """

    def __init__(self, message: str, policy_identifier: str) -> None:
        """Initialize ResolutionError.

        Args:
            message: Error description.
            policy_identifier: The unresolved identifier.
        """
        super().__init__(message)
        self.policy_identifier = policy_identifier


class PropagationTimeout(HarnessError):
    """Raised when a permission grant or assignment was not observed in time."""


class TeardownError(HarnessError):
    """Raised when a temporary assignment or resource could not be deleted.

    Attributes:
        target: Name or id of the item that leaked.
    """

    def __init__(self, message: str, target: str) -> None:
        """Initialize TeardownError.

        Args:
            message: Error description.
            target: The leaked item.
        """
        super().__init__(message)
        self.target = target


class ControlPlaneError(HarnessError):
    """Raised when the provider control plane or data plane rejects a request.

    Attributes:
        status_code: HTTP status code from the provider (if available).
        code: Provider error code from the response body (if available).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize ControlPlaneError.

        Args:
            message: Error description.
            status_code: Optional HTTP status code.
            code: Optional provider error code.
        """
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class AuthorizationFailedError(ControlPlaneError):
    """Raised on authorization-class failures (missing or unpropagated role)."""


class RequestDisallowedByPolicyError(ControlPlaneError):
    """Raised when a policy assignment blocked the request (Deny effect)."""


class ResourceNotFoundError(ControlPlaneError):
    """Raised when the requested resource does not exist."""
