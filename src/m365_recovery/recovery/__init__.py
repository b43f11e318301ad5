"""Microsoft 365 bulk recovery orchestration.

Components, leaf-first:
- SubscriptionResolver: subscription name -> id (exactly one active match)
- spec_builder: workload -> ordered RecoverySpecs and named definitions
- BulkRecoveryLauncher: one StartBulkRecovery per sub-workload, failures isolated
- ProgressTracker: shaped progress snapshots and a cancellable wait helper
- RecoveryCanceller: CancelBulkRecovery
- OperationalRecoveryCoordinator: initial and complete operational stages
- BulkRecoveryService: resolve-then-dispatch facade returning RecoveryResult

Usage:
    from m365_recovery.recovery import BulkRecoveryService, WorkloadType

    service = BulkRecoveryService(client)
    result = service.get_progress(instance_id, "Contoso")
"""

from m365_recovery.recovery.canceller import RecoveryCanceller
from m365_recovery.recovery.launcher import BulkRecoveryLauncher
from m365_recovery.recovery.models import (
    ArchiveFolderAction,
    BulkRecoveryInstance,
    BulkRecoveryProgress,
    BulkRecoveryStatus,
    LaunchReport,
    OperationalFilter,
    SubscriptionRef,
    SubWorkloadType,
    WorkloadType,
)
from m365_recovery.recovery.phases import OperationalRecoveryCoordinator
from m365_recovery.recovery.progress import ProgressTracker
from m365_recovery.recovery.service import BulkRecoveryService
from m365_recovery.recovery.subscriptions import SubscriptionResolver

__all__ = [
    "ArchiveFolderAction",
    "BulkRecoveryInstance",
    "BulkRecoveryLauncher",
    "BulkRecoveryProgress",
    "BulkRecoveryService",
    "BulkRecoveryStatus",
    "LaunchReport",
    "OperationalFilter",
    "OperationalRecoveryCoordinator",
    "ProgressTracker",
    "RecoveryCanceller",
    "SubWorkloadType",
    "SubscriptionRef",
    "SubscriptionResolver",
    "WorkloadType",
]
