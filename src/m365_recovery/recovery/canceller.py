"""Request cancellation of an in-flight bulk recovery.

Cancellation is a request, not an immediate state change: the backend moves
the instance through CANCELING to CANCELED on its own schedule. Re-poll with
ProgressTracker to observe it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from m365_recovery.core.errors import (
    AuthenticationError,
    GraphQLAPIError,
    InvalidInstanceIdError,
    RateLimitExceeded,
    RecoveryToolError,
)
from m365_recovery.core.logging import get_logger
from m365_recovery.core.result import RecoveryResult
from m365_recovery.core.validation import is_valid_uuid
from m365_recovery.graphql.operations import CANCEL_BULK_RECOVERY, CANCEL_BULK_RECOVERY_MUTATION
from m365_recovery.recovery.models import SubscriptionRef

if TYPE_CHECKING:
    from m365_recovery.graphql.client import RscClient

logger = get_logger(__name__)


class RecoveryCanceller:
    """Sends CancelBulkRecovery for one instance."""

    def __init__(self, client: RscClient) -> None:
        self._client = client

    def cancel(self, instance_id: str, subscription: SubscriptionRef) -> RecoveryResult[str]:
        """Request cancellation of a bulk recovery.

        Args:
            instance_id: Bulk recovery instance id (UUID)
            subscription: Resolved subscription the recovery runs against

        Returns:
            A human-readable status line on success, or a failed result
        """
        if not is_valid_uuid(instance_id):
            return RecoveryResult.failure(InvalidInstanceIdError(instance_id))

        logger.info("Cancelling bulk recovery", instance_id=instance_id)
        try:
            data = self._client.execute(
                CANCEL_BULK_RECOVERY_MUTATION,
                {
                    "input": {
                        "bulkRecoveryInstanceId": instance_id,
                        "subscriptionId": subscription.id,
                    }
                },
                operation_name=CANCEL_BULK_RECOVERY,
            )
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            logger.error("Cancel request failed", instance_id=instance_id, error=str(e))
            return RecoveryResult.failure(
                RecoveryToolError(f"Failed to cancel bulk recovery {instance_id}: {e}")
            )

        if not data.get("cancelBulkRecovery"):
            logger.error("Cancel request declined", instance_id=instance_id)
            return RecoveryResult.failure(
                RecoveryToolError(
                    f"Failed to cancel bulk recovery {instance_id}: the backend declined "
                    "the request. The recovery may already be finished."
                )
            )

        logger.info("Cancel requested", instance_id=instance_id)
        return RecoveryResult.success(
            f"Cancellation requested for bulk recovery {instance_id}. "
            "Poll its progress to confirm it reaches CANCELED."
        )
