"""Custom exception types for the M365 bulk recovery client.

Error messages follow one shape throughout the package:
- What failed (operation, recovery name or instance id)
- Why it failed (local precondition or backend message)
- How to fix it, where there is something the caller can do
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from m365_recovery.recovery.models import BulkRecoveryProgress


class RecoveryToolError(Exception):
    """Base exception for all M365 bulk recovery client errors."""

    pass


class ConfigValidationError(RecoveryToolError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(RecoveryToolError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class AuthenticationError(RecoveryToolError):
    """Raised when a bearer token cannot be acquired from the platform."""

    pass


class GraphQLAPIError(RecoveryToolError):
    """Raised when the GraphQL endpoint fails at the HTTP level.

    Attributes:
        status_code: HTTP status code from the API (None for transport failures)
        error_code: Short error code, if the response carried one
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class EmptyResponseError(GraphQLAPIError):
    """Raised when the endpoint answered without a usable body or ``data`` field."""

    def __init__(self, message: str, operation_name: str | None = None):
        super().__init__(message, status_code=None, error_code="EmptyResponse")
        self.operation_name = operation_name


class GraphQLResponseError(GraphQLAPIError):
    """Raised when the response carries a GraphQL ``errors`` envelope.

    The first message is the failure reason; the rest are kept for logging.

    Attributes:
        messages: Every message from the errors array, in order
        operation_name: The named GraphQL operation that failed
    """

    def __init__(
        self,
        messages: list[str],
        operation_name: str | None = None,
        status_code: int | None = None,
    ):
        first = messages[0] if messages else "Unknown GraphQL error"
        super().__init__(first, status_code=status_code, error_code="GraphQLError")
        self.messages = messages
        self.operation_name = operation_name


class RateLimitExceeded(RecoveryToolError):
    """Raised when API rate limits are exceeded and cannot be recovered.

    This is raised when the rate limiter would require an excessive wait time
    (>20 seconds) rather than blocking indefinitely.
    """

    pass


class SubscriptionResolutionError(RecoveryToolError):
    """Raised when a subscription name does not match exactly one active organization.

    Attributes:
        subscription_name: The display name that was looked up
        match_count: How many active organizations matched
    """

    def __init__(self, message: str, subscription_name: str, match_count: int):
        super().__init__(message)
        self.subscription_name = subscription_name
        self.match_count = match_count


class RecoveryValidationError(RecoveryToolError):
    """Raised when a recovery request fails a local precondition.

    Always raised before any network call is made.
    """

    pass


class InvalidInstanceIdError(RecoveryValidationError):
    """Raised when a bulk recovery instance id is not shaped like a UUID."""

    def __init__(self, instance_id: str):
        super().__init__(
            f"'{instance_id}' is not a valid bulk recovery instance id. "
            "Instance ids are UUIDs, as printed by start-recovery."
        )
        self.instance_id = instance_id


class RecoveryLaunchError(RecoveryToolError):
    """Raised (or reported) when one sub-workload submission fails to start.

    Attributes:
        recovery_name: Full submitted name, e.g. "Migration1_Mailbox"
    """

    def __init__(self, message: str, recovery_name: str):
        super().__init__(message)
        self.recovery_name = recovery_name


class RecoveryWaitTimeout(RecoveryToolError):
    """Raised when a recovery does not reach a terminal state before the wait times out.

    Attributes:
        instance_id: The instance that was being watched
        last_progress: Last successfully polled progress, if any
    """

    def __init__(
        self,
        message: str,
        instance_id: str,
        last_progress: BulkRecoveryProgress | None = None,
    ):
        super().__init__(message)
        self.instance_id = instance_id
        self.last_progress = last_progress


class RecoveryWaitCancelled(RecoveryToolError):
    """Raised when the caller stops a wait through its cancellation event."""

    def __init__(self, message: str, instance_id: str):
        super().__init__(message)
        self.instance_id = instance_id
