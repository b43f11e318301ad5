"""Submit bulk recovery definitions to the backend.

Each sub-workload definition is submitted as its own StartBulkRecovery
mutation, sequentially, in table order (Mailbox, Calendar, Contacts for
Exchange). Failures are isolated per submission: a transport failure, an
error envelope, or an ``error`` field in the payload marks that one
submission as failed and the loop moves on to its siblings. Submissions that
already started are never rolled back.

Usage:
    launcher = BulkRecoveryLauncher(client)
    report = launcher.launch("Migration1", definitions, subscription)
    for instance in report.instances:
        print(instance.name, instance.instance_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from m365_recovery.core.errors import (
    AuthenticationError,
    GraphQLAPIError,
    RateLimitExceeded,
    RecoveryLaunchError,
)
from m365_recovery.core.logging import get_logger
from m365_recovery.core.result import RecoveryResult
from m365_recovery.graphql.operations import START_BULK_RECOVERY, START_BULK_RECOVERY_MUTATION
from m365_recovery.recovery.models import (
    BulkRecoveryDefinition,
    BulkRecoveryInstance,
    LaunchReport,
    SubscriptionRef,
)

if TYPE_CHECKING:
    from m365_recovery.graphql.client import RscClient

logger = get_logger(__name__)


class BulkRecoveryLauncher:
    """Starts bulk recoveries, one backend instance per definition."""

    def __init__(self, client: RscClient) -> None:
        self._client = client

    def launch(
        self,
        base_name: str,
        definitions: list[BulkRecoveryDefinition],
        subscription: SubscriptionRef,
    ) -> LaunchReport:
        """Submit every definition, continuing past individual failures.

        Args:
            base_name: Logical recovery name the definitions were derived from
            definitions: One definition per sub-workload, in submission order
            subscription: Resolved subscription the recovery runs against

        Returns:
            LaunchReport with one result per definition, in order
        """
        report = LaunchReport(base_name=base_name)

        for definition in definitions:
            result = self._submit(definition, subscription)
            report.submissions.append(result)

        logger.info(
            "Bulk recovery launch complete",
            recovery=base_name,
            subscription=subscription.name,
            submitted=len(definitions),
            started=len(report.instances),
            failed=len(report.failures),
        )
        return report

    def _submit(
        self,
        definition: BulkRecoveryDefinition,
        subscription: SubscriptionRef,
    ) -> RecoveryResult[BulkRecoveryInstance]:
        logger.info(
            "Starting bulk recovery",
            name=definition.name,
            subscription=subscription.name,
        )
        try:
            data = self._client.execute(
                START_BULK_RECOVERY_MUTATION,
                {"input": definition.to_wire()},
                operation_name=START_BULK_RECOVERY,
            )
        except (GraphQLAPIError, RateLimitExceeded, AuthenticationError) as e:
            return self._failed(definition.name, str(e))

        payload = data.get("startBulkRecovery")
        if not payload:
            return self._failed(definition.name, "the backend returned no recovery handle")

        if payload.get("error"):
            return self._failed(definition.name, str(payload["error"]))

        instance_id = payload.get("bulkRecoveryInstanceId")
        if not instance_id:
            return self._failed(
                definition.name, "the backend returned no bulk recovery instance id"
            )

        instance = BulkRecoveryInstance(
            name=definition.name,
            instance_id=instance_id,
            taskchain_id=payload.get("taskchainId"),
            job_id=payload.get("jobId"),
        )
        logger.info(
            "Bulk recovery started",
            name=definition.name,
            instance_id=instance_id,
            taskchain_id=instance.taskchain_id,
        )
        return RecoveryResult.success(instance)

    def _failed(self, name: str, reason: str) -> RecoveryResult[BulkRecoveryInstance]:
        logger.error("Bulk recovery failed to start", name=name, reason=reason)
        return RecoveryResult.failure(
            RecoveryLaunchError(
                f"Failed to start bulk recovery '{name}': {reason}", recovery_name=name
            )
        )
