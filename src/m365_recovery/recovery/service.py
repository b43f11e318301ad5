"""Command-level facade over the bulk recovery components.

Every public method here takes a subscription *name*, resolves it, runs one
recovery operation and returns a RecoveryResult. Nothing is raised for
expected failures (validation, subscription lookup, backend errors), so a
batch driver can run many recoveries and inspect each result.

Local checks always run before the subscription is resolved: a malformed
instance id or an incomplete request never reaches the network.

Usage:
    service = BulkRecoveryService(client)
    result = service.start_bulk_recovery(
        "Migration1",
        WorkloadType.ONEDRIVE,
        recovery_point,
        "Contoso",
        ad_group_id="grp-123",
        in_place=True,
    )
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from m365_recovery.core.errors import (
    AuthenticationError,
    GraphQLAPIError,
    InvalidInstanceIdError,
    RateLimitExceeded,
    RecoveryToolError,
    RecoveryValidationError,
    SubscriptionResolutionError,
)
from m365_recovery.core.logging import get_logger, start_operation
from m365_recovery.core.result import RecoveryResult
from m365_recovery.core.validation import is_valid_uuid
from m365_recovery.recovery.canceller import RecoveryCanceller
from m365_recovery.recovery.launcher import BulkRecoveryLauncher
from m365_recovery.recovery.models import (
    BulkRecoveryInstance,
    BulkRecoveryProgress,
    LaunchReport,
    OperationalFilter,
    SubscriptionRef,
    SubWorkloadType,
    WorkloadType,
)
from m365_recovery.recovery.phases import OperationalRecoveryCoordinator
from m365_recovery.recovery.progress import DEFAULT_POLL_INTERVAL_SECONDS, ProgressTracker
from m365_recovery.recovery.spec_builder import (
    build_definitions,
    build_recovery_specs,
    validate_request,
)
from m365_recovery.recovery.subscriptions import SubscriptionResolver

if TYPE_CHECKING:
    from m365_recovery.graphql.client import RscClient

logger = get_logger(__name__)


class BulkRecoveryService:
    """Resolve-then-dispatch entry points for every bulk recovery command.

    Attributes:
        resolver: SubscriptionResolver used by every command
        launcher: BulkRecoveryLauncher for full recoveries
        tracker: ProgressTracker for polling and waiting
        canceller: RecoveryCanceller
        coordinator: OperationalRecoveryCoordinator for the two-phase flow
    """

    def __init__(self, client: RscClient) -> None:
        self.resolver = SubscriptionResolver(client)
        self.launcher = BulkRecoveryLauncher(client)
        self.tracker = ProgressTracker(client)
        self.canceller = RecoveryCanceller(client)
        self.coordinator = OperationalRecoveryCoordinator(client, launcher=self.launcher)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, subscription_name: str) -> SubscriptionRef:
        return self.resolver.resolve(subscription_name)

    def _begin(self, operation: str, **context: object) -> None:
        start_operation(operation, **context)
        logger.info("Operation started")

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_bulk_recovery(
        self,
        name: str,
        workload_type: WorkloadType,
        recovery_point: datetime,
        subscription_name: str,
        *,
        sub_workload_type: SubWorkloadType | None = None,
        ad_group_id: str | None = None,
        configured_group_name: str | None = None,
        in_place: bool = False,
    ) -> RecoveryResult[LaunchReport]:
        """Start a full (not time-bounded) bulk recovery.

        Returns:
            A LaunchReport with one result per sub-workload, or a failed result
            if nothing could be submitted (validation or subscription lookup)
        """
        self._begin(
            "start_bulk_recovery",
            recovery=name,
            workload=workload_type.value,
            subscription=subscription_name,
        )
        try:
            selector = validate_request(
                name,
                workload_type,
                sub_workload_type=sub_workload_type,
                ad_group_id=ad_group_id,
                configured_group_name=configured_group_name,
            )
            subscription = self._resolve(subscription_name)
            specs = build_recovery_specs(
                workload_type,
                recovery_point,
                subscription.id,
                sub_workload_type=sub_workload_type,
                in_place=in_place,
            )
            definitions = build_definitions(name, selector, specs)
        except (RecoveryValidationError, SubscriptionResolutionError) as e:
            logger.warning("Bulk recovery not started", recovery=name, error=str(e))
            return RecoveryResult.failure(e)
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            return self._lookup_failed(subscription_name, e)

        return RecoveryResult.success(self.launcher.launch(name, definitions, subscription))

    def start_operational_recovery(
        self,
        name: str,
        workload_type: WorkloadType,
        recovery_point: datetime,
        subscription_name: str,
        operational: OperationalFilter,
        *,
        sub_workload_type: SubWorkloadType | None = None,
        ad_group_id: str | None = None,
        configured_group_name: str | None = None,
        in_place: bool = False,
    ) -> RecoveryResult[LaunchReport]:
        """Start the time-bounded first stage of an operational recovery."""
        self._begin(
            "start_operational_recovery",
            recovery=name,
            workload=workload_type.value,
            subscription=subscription_name,
        )
        try:
            validate_request(
                name,
                workload_type,
                sub_workload_type=sub_workload_type,
                ad_group_id=ad_group_id,
                configured_group_name=configured_group_name,
                operational=operational,
            )
            subscription = self._resolve(subscription_name)
            report = self.coordinator.start_initial(
                name,
                workload_type,
                recovery_point,
                subscription,
                operational,
                sub_workload_type=sub_workload_type,
                ad_group_id=ad_group_id,
                configured_group_name=configured_group_name,
                in_place=in_place,
            )
        except (RecoveryValidationError, SubscriptionResolutionError) as e:
            logger.warning("Operational recovery not started", recovery=name, error=str(e))
            return RecoveryResult.failure(e)
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            return self._lookup_failed(subscription_name, e)

        return RecoveryResult.success(report)

    # ------------------------------------------------------------------
    # Instance operations
    # ------------------------------------------------------------------

    def get_progress(
        self,
        instance_id: str,
        subscription_name: str,
    ) -> RecoveryResult[BulkRecoveryProgress]:
        """Poll the progress of a bulk recovery instance once."""
        self._begin("get_progress", instance_id=instance_id, subscription=subscription_name)
        return self._with_subscription(
            instance_id,
            subscription_name,
            lambda sub: self.tracker.get_progress(instance_id, sub),
        )

    def wait_for_recovery(
        self,
        instance_id: str,
        subscription_name: str,
        *,
        timeout: float,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancel_event: threading.Event | None = None,
        on_progress: Callable[[BulkRecoveryProgress], None] | None = None,
    ) -> RecoveryResult[BulkRecoveryProgress]:
        """Poll until the recovery is terminal, the timeout elapses or the event is set."""
        self._begin("wait_for_recovery", instance_id=instance_id, subscription=subscription_name)
        return self._with_subscription(
            instance_id,
            subscription_name,
            lambda sub: self.tracker.wait_until_terminal(
                instance_id,
                sub,
                timeout=timeout,
                poll_interval=poll_interval,
                cancel_event=cancel_event,
                on_progress=on_progress,
            ),
        )

    def cancel_bulk_recovery(
        self,
        instance_id: str,
        subscription_name: str,
    ) -> RecoveryResult[str]:
        """Request cancellation of a bulk recovery instance."""
        self._begin("cancel_bulk_recovery", instance_id=instance_id, subscription=subscription_name)
        return self._with_subscription(
            instance_id,
            subscription_name,
            lambda sub: self.canceller.cancel(instance_id, sub),
        )

    def complete_operational_recovery(
        self,
        instance_id: str,
        subscription_name: str,
    ) -> RecoveryResult[BulkRecoveryInstance]:
        """Run the second stage of an operational recovery on the same instance."""
        self._begin(
            "complete_operational_recovery",
            instance_id=instance_id,
            subscription=subscription_name,
        )
        return self._with_subscription(
            instance_id,
            subscription_name,
            lambda sub: self.coordinator.complete(instance_id, sub),
        )

    def _with_subscription[T](
        self,
        instance_id: str,
        subscription_name: str,
        operation: Callable[[SubscriptionRef], RecoveryResult[T]],
    ) -> RecoveryResult[T]:
        if not is_valid_uuid(instance_id):
            logger.warning("Rejected malformed instance id", instance_id=instance_id)
            return RecoveryResult.failure(InvalidInstanceIdError(instance_id))
        try:
            subscription = self._resolve(subscription_name)
        except SubscriptionResolutionError as e:
            return RecoveryResult.failure(e)
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            return self._lookup_failed(subscription_name, e)
        return operation(subscription)

    def _lookup_failed(self, subscription_name: str, error: RecoveryToolError) -> RecoveryResult:
        logger.error("Subscription lookup failed", subscription=subscription_name, error=str(error))
        return RecoveryResult.failure(
            RecoveryToolError(f"Could not look up subscription '{subscription_name}': {error}")
        )
