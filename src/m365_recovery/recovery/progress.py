"""Track the progress of a bulk recovery instance.

A progress poll is one synchronous BulkRecoveryProgress query; there is no
pagination. The raw backend record is shaped deterministically:

- epoch-millisecond timestamps become local-time strings (None when absent)
- elapsed time becomes "D days, H hours, M minutes, S seconds", and is None
  until the recovery has a start time
- current_step is kept only while IN_PROGRESS
- canceled object count is derived only for CANCELED recoveries, and the
  failure reason is cleared for them
- the failure action is always reported as IGNORE_AND_CONTINUE

Polling is expected to be repeated, so errors come back as failed results
rather than exceptions. ``wait_until_terminal`` wraps that loop with a
timeout and an optional cancellation event.

Usage:
    tracker = ProgressTracker(client)
    result = tracker.get_progress(instance_id, subscription)
    if result.ok:
        print(result.value.to_row())
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from m365_recovery.core.errors import (
    AuthenticationError,
    EmptyResponseError,
    GraphQLAPIError,
    InvalidInstanceIdError,
    RateLimitExceeded,
    RecoveryValidationError,
    RecoveryWaitCancelled,
    RecoveryWaitTimeout,
)
from m365_recovery.core.logging import get_logger
from m365_recovery.core.result import RecoveryResult
from m365_recovery.core.timeutil import format_elapsed, format_epoch_ms
from m365_recovery.core.validation import is_valid_uuid
from m365_recovery.graphql.operations import BULK_RECOVERY_PROGRESS, BULK_RECOVERY_PROGRESS_QUERY
from m365_recovery.recovery.models import (
    FAILURE_ACTION,
    BulkRecoveryProgress,
    BulkRecoveryStatus,
    GroupProgress,
    SubscriptionRef,
    WorkloadProgress,
)

if TYPE_CHECKING:
    from m365_recovery.graphql.client import RscClient

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 30.0


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _shape_workload(raw: dict[str, Any]) -> WorkloadProgress:
    return WorkloadProgress(
        workload_type=raw.get("workloadType"),
        status=BulkRecoveryStatus.parse(raw.get("status")),
        failed=_count(raw.get("failedObjects")),
        succeeded=_count(raw.get("succeededObjects")),
        in_progress=_count(raw.get("inProgressObjects")),
        total=_count(raw.get("totalObjects")),
    )


def _shape_group(raw: dict[str, Any]) -> GroupProgress:
    return GroupProgress(
        group_name=raw.get("groupName"),
        group_id=raw.get("groupId"),
        group_type=raw.get("groupType"),
        workload_progress=tuple(_shape_workload(w) for w in raw.get("workloadProgress") or []),
    )


def shape_progress(instance_id: str, raw: dict[str, Any]) -> BulkRecoveryProgress:
    """Turn a raw bulkRecoveryProgress record into a BulkRecoveryProgress."""
    status = BulkRecoveryStatus.parse(raw.get("status"))

    failed = _count(raw.get("failedObjects"))
    succeeded = _count(raw.get("succeededObjects"))
    in_progress = _count(raw.get("inProgressObjects"))
    total = _count(raw.get("totalObjects"))

    start_time = format_epoch_ms(raw.get("startTime"))
    # A recovery that has not started cannot have elapsed
    elapsed = format_elapsed(raw.get("elapsedTime")) if start_time is not None else None

    failure_reason = raw.get("failureReason") or None
    canceled = None
    if status is BulkRecoveryStatus.CANCELED:
        canceled = max(total - succeeded - failed - in_progress, 0)
        failure_reason = None

    current_step = raw.get("currentStep") if status is BulkRecoveryStatus.IN_PROGRESS else None

    return BulkRecoveryProgress(
        instance_id=instance_id,
        status=status,
        failed=failed,
        succeeded=succeeded,
        in_progress=in_progress,
        total=total,
        objects_without_snapshot=_count(raw.get("objectsWithoutSnapshot")),
        groups_processed=_count(raw.get("groupsProcessed")),
        total_groups=_count(raw.get("totalGroups")),
        create_time=format_epoch_ms(raw.get("createTime")),
        start_time=start_time,
        end_time=format_epoch_ms(raw.get("endTime")),
        elapsed_time=elapsed,
        failure_reason=failure_reason,
        failure_action_type=FAILURE_ACTION,
        current_step=current_step,
        canceled=canceled,
        group_progress=tuple(_shape_group(g) for g in raw.get("groupProgress") or []),
    )


class ProgressTracker:
    """Polls bulk recovery progress for one instance at a time."""

    def __init__(self, client: RscClient) -> None:
        self._client = client

    def get_progress(
        self,
        instance_id: str,
        subscription: SubscriptionRef,
    ) -> RecoveryResult[BulkRecoveryProgress]:
        """Fetch and shape the current progress of a bulk recovery.

        Args:
            instance_id: Bulk recovery instance id (UUID)
            subscription: Resolved subscription the recovery runs against

        Returns:
            Shaped progress, or a failed result (never raises for backend errors)
        """
        if not is_valid_uuid(instance_id):
            return RecoveryResult.failure(InvalidInstanceIdError(instance_id))

        try:
            data = self._client.execute(
                BULK_RECOVERY_PROGRESS_QUERY,
                {
                    "input": {
                        "bulkRecoveryInstanceId": instance_id,
                        "subscriptionId": subscription.id,
                    }
                },
                operation_name=BULK_RECOVERY_PROGRESS,
            )
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            logger.warning(
                "Bulk recovery progress unavailable",
                instance_id=instance_id,
                error=str(e),
            )
            return RecoveryResult.failure(e)

        raw = data.get("bulkRecoveryProgress")
        if not raw:
            return RecoveryResult.failure(
                EmptyResponseError(
                    f"No progress returned for bulk recovery {instance_id}",
                    operation_name=BULK_RECOVERY_PROGRESS,
                )
            )

        progress = shape_progress(instance_id, raw)
        logger.debug(
            "Bulk recovery progress",
            instance_id=instance_id,
            status=progress.status.value,
            succeeded=progress.succeeded,
            total=progress.total,
        )
        return RecoveryResult.success(progress)

    def wait_until_terminal(
        self,
        instance_id: str,
        subscription: SubscriptionRef,
        *,
        timeout: float,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancel_event: threading.Event | None = None,
        on_progress: Callable[[BulkRecoveryProgress], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> RecoveryResult[BulkRecoveryProgress]:
        """Poll until the recovery reaches a terminal status.

        Transient poll failures are logged and retried on the next tick.
        Validation failures (a malformed id) end the wait immediately.

        Args:
            instance_id: Bulk recovery instance id (UUID)
            subscription: Resolved subscription the recovery runs against
            timeout: Maximum seconds to wait
            poll_interval: Seconds between polls
            cancel_event: Set it from another thread to stop waiting
            on_progress: Called with every successfully polled snapshot
            clock: Monotonic clock, injectable for tests

        Returns:
            Terminal progress, or a failed result carrying RecoveryWaitTimeout
            (with the last observed progress) or RecoveryWaitCancelled
        """
        stop = cancel_event or threading.Event()
        deadline = clock() + timeout
        last_progress: BulkRecoveryProgress | None = None
        polls = 0

        while True:
            if stop.is_set():
                return self._cancelled(instance_id)

            result = self.get_progress(instance_id, subscription)
            polls += 1
            if result.ok and result.value is not None:
                last_progress = result.value
                if on_progress is not None:
                    on_progress(last_progress)
                if last_progress.is_terminal:
                    logger.info(
                        "Bulk recovery reached terminal state",
                        instance_id=instance_id,
                        status=last_progress.status.value,
                        polls=polls,
                    )
                    return result
            elif isinstance(result.error, RecoveryValidationError):
                return result
            else:
                logger.warning(
                    "Progress poll failed, will retry",
                    instance_id=instance_id,
                    error=result.message,
                    polls=polls,
                )

            remaining = deadline - clock()
            if remaining <= 0:
                logger.warning("Timed out waiting for bulk recovery", instance_id=instance_id)
                status = last_progress.status.value if last_progress else "unknown"
                return RecoveryResult.failure(
                    RecoveryWaitTimeout(
                        f"Bulk recovery {instance_id} did not finish within {timeout:.0f}s "
                        f"(last status: {status}). It keeps running on the backend.",
                        instance_id=instance_id,
                        last_progress=last_progress,
                    )
                )

            if stop.wait(min(poll_interval, remaining)):
                return self._cancelled(instance_id)

    def _cancelled(self, instance_id: str) -> RecoveryResult[BulkRecoveryProgress]:
        logger.info("Stopped waiting for bulk recovery", instance_id=instance_id)
        return RecoveryResult.failure(
            RecoveryWaitCancelled(
                f"Stopped waiting for bulk recovery {instance_id}. "
                "The recovery itself was not cancelled.",
                instance_id=instance_id,
            )
        )
