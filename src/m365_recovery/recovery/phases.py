"""Two-phase operational recovery.

Phase one (INITIAL_OPERATIONAL_RECOVERY) is an ordinary bulk recovery whose
specs carry an operational window, so recent or high-priority data comes
back first. Phase two (COMPLETE_OPERATIONAL_RECOVERY) is a separate
mutation against the *same* instance id that restores everything outside the
original window.

Ordering between the phases is not checked here. Completing an instance that
was not started as an operational recovery, or one that already finished, is
reported by the backend and passed through verbatim.
"""

from __future__ import annotations

from datetime import datetime
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
from m365_recovery.graphql.operations import (
    COMPLETE_OPERATIONAL_RECOVERY,
    COMPLETE_OPERATIONAL_RECOVERY_MUTATION,
)
from m365_recovery.recovery.launcher import BulkRecoveryLauncher
from m365_recovery.recovery.models import (
    BulkRecoveryInstance,
    LaunchReport,
    OperationalFilter,
    RecoveryStage,
    SubscriptionRef,
    SubWorkloadType,
    WorkloadType,
)
from m365_recovery.recovery.spec_builder import (
    build_definitions,
    build_recovery_specs,
    build_workload_selector,
)

if TYPE_CHECKING:
    from m365_recovery.graphql.client import RscClient

logger = get_logger(__name__)


class OperationalRecoveryCoordinator:
    """Drives the initial and complete stages of an operational recovery."""

    def __init__(self, client: RscClient, launcher: BulkRecoveryLauncher | None = None) -> None:
        self._client = client
        self._launcher = launcher or BulkRecoveryLauncher(client)

    def start_initial(
        self,
        name: str,
        workload_type: WorkloadType,
        recovery_point: datetime,
        subscription: SubscriptionRef,
        operational: OperationalFilter,
        *,
        sub_workload_type: SubWorkloadType | None = None,
        ad_group_id: str | None = None,
        configured_group_name: str | None = None,
        in_place: bool = False,
        now: datetime | None = None,
    ) -> LaunchReport:
        """Launch the time-bounded first stage.

        Raises:
            RecoveryValidationError: If the selector or the operational
                window is not legal for the workload (nothing is sent)
        """
        selector = build_workload_selector(workload_type, ad_group_id, configured_group_name)
        specs = build_recovery_specs(
            workload_type,
            recovery_point,
            subscription.id,
            sub_workload_type=sub_workload_type,
            operational=operational,
            in_place=in_place,
            now=now,
        )
        definitions = build_definitions(name, selector, specs)

        logger.info(
            "Starting operational recovery",
            recovery=name,
            stage=RecoveryStage.INITIAL_OPERATIONAL_RECOVERY.value,
            sub_workloads=len(definitions),
        )
        return self._launcher.launch(name, definitions, subscription)

    def complete(
        self,
        instance_id: str,
        subscription: SubscriptionRef,
    ) -> RecoveryResult[BulkRecoveryInstance]:
        """Restore the data outside the initial window under the same instance.

        Args:
            instance_id: Instance id returned by the initial stage
            subscription: Resolved subscription the recovery runs against

        Returns:
            The instance handle, or a failed result with the backend's message
        """
        if not is_valid_uuid(instance_id):
            return RecoveryResult.failure(InvalidInstanceIdError(instance_id))

        logger.info(
            "Completing operational recovery",
            instance_id=instance_id,
            stage=RecoveryStage.COMPLETE_OPERATIONAL_RECOVERY.value,
        )
        try:
            data = self._client.execute(
                COMPLETE_OPERATIONAL_RECOVERY_MUTATION,
                {
                    "input": {
                        "bulkRecoveryInstanceId": instance_id,
                        "subscriptionId": subscription.id,
                    }
                },
                operation_name=COMPLETE_OPERATIONAL_RECOVERY,
            )
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            return self._failed(instance_id, str(e))

        payload = data.get("completeOperationalRecovery")
        if not payload:
            return self._failed(instance_id, "the backend returned no result")
        if payload.get("error"):
            return self._failed(instance_id, str(payload["error"]))

        instance = BulkRecoveryInstance(
            name=RecoveryStage.COMPLETE_OPERATIONAL_RECOVERY.value,
            instance_id=instance_id,
            taskchain_id=payload.get("taskchainId"),
            job_id=payload.get("jobId"),
        )
        logger.info(
            "Operational recovery completion started",
            instance_id=instance_id,
            taskchain_id=instance.taskchain_id,
        )
        return RecoveryResult.success(instance)

    def _failed(self, instance_id: str, reason: str) -> RecoveryResult[BulkRecoveryInstance]:
        logger.error("Complete operational recovery failed", instance_id=instance_id, reason=reason)
        return RecoveryResult.failure(
            RecoveryToolError(
                f"Failed to complete operational recovery {instance_id}: {reason}"
            )
        )
