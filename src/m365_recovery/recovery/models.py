"""Data model for Microsoft 365 bulk recovery.

Each axis of a recovery request is a closed enumeration whose values are the
wire values, and each tagged union (group selector, operational recovery
spec) is a small set of frozen dataclasses. Adding a workload means adding an
enum member and a row to the spec builder's table; the builder's ``match``
statements then fail loudly until the new member is handled.

Records that go over the wire expose ``to_wire()``; records that come back
are built by the component that reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from m365_recovery.core.result import RecoveryResult
from m365_recovery.core.timeutil import to_wire_time

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class WorkloadType(StrEnum):
    """Microsoft 365 workload a bulk recovery targets."""

    ONEDRIVE = "OneDrive"
    EXCHANGE = "Exchange"
    SHAREPOINT = "SharePoint"

    @classmethod
    def parse(cls, value: str) -> WorkloadType:
        """Case-insensitive lookup by display name."""
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(
            f"Unknown workload type '{value}'. Expected one of: "
            + ", ".join(m.value for m in cls)
        )


class SubWorkloadType(StrEnum):
    """Sub-snappable type within a workload. NONE marks single-type workloads."""

    NONE = "NONE"
    MAILBOX = "MAILBOX"
    CALENDAR = "CALENDAR"
    CONTACTS = "CONTACTS"

    @classmethod
    def parse(cls, value: str) -> SubWorkloadType:
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(
                f"Unknown sub-workload type '{value}'. Expected one of: Mailbox, Calendar, Contacts"
            ) from None


class SnappableType(StrEnum):
    O365_ONEDRIVE = "O365_ONEDRIVE"
    O365_EXCHANGE = "O365_EXCHANGE"
    O365_SHAREPOINT = "O365_SHAREPOINT"


class ArchiveFolderAction(StrEnum):
    """How archive folders are treated in a mailbox operational recovery."""

    NO_ACTION = "NO_ACTION"
    EXCLUDE_ARCHIVE = "EXCLUDE_ARCHIVE"
    ARCHIVE_ONLY = "ARCHIVE_ONLY"


class RecoveryStage(StrEnum):
    INITIAL_OPERATIONAL_RECOVERY = "INITIAL_OPERATIONAL_RECOVERY"
    COMPLETE_OPERATIONAL_RECOVERY = "COMPLETE_OPERATIONAL_RECOVERY"


class BulkRecoveryStatus(StrEnum):
    """Backend status of a bulk recovery instance."""

    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    CANCELING = "CANCELING"
    SUCCEEDED = "SUCCEEDED"
    PARTIALLY_SUCCEEDED = "PARTIALLY_SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> BulkRecoveryStatus:
        """Map a backend status string to a member, UNKNOWN if unrecognised."""
        if value is None:
            return cls.UNKNOWN
        text = str(value).strip().upper()
        if text == "CANCELLED":
            text = "CANCELED"
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        BulkRecoveryStatus.SUCCEEDED,
        BulkRecoveryStatus.PARTIALLY_SUCCEEDED,
        BulkRecoveryStatus.FAILED,
        BulkRecoveryStatus.CANCELED,
    }
)

# Constants carried on every bulk recovery definition
RECOVERY_MODE = "AD_HOC"
FAILURE_ACTION = "IGNORE_AND_CONTINUE"
RECOVERY_DOMAIN = "O365"
NAME_COLLISION_RULE = "OVERWRITE"


# ---------------------------------------------------------------------------
# Subscription and selectors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscriptionRef:
    """A resolved Microsoft 365 subscription (tenant organization)."""

    name: str
    id: str


@dataclass(frozen=True)
class AdGroupSelector:
    """Selects accounts by directory group id. Used for OneDrive and Exchange."""

    group_id: str

    def to_wire(self) -> dict[str, Any]:
        return {"adGroupSelector": {"groupId": self.group_id}}


@dataclass(frozen=True)
class ConfiguredGroupSelector:
    """Selects sites by a pre-configured group name. Used for SharePoint."""

    group_name: str

    def to_wire(self) -> dict[str, Any]:
        return {"configuredGroupSelector": {"groupName": self.group_name}}


WorkloadSelector = AdGroupSelector | ConfiguredGroupSelector


# ---------------------------------------------------------------------------
# Operational recovery specs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeRange:
    from_time: datetime | None = None
    until_time: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return self.from_time is None and self.until_time is None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {}
        if self.from_time is not None:
            wire["fromTime"] = to_wire_time(self.from_time)
        if self.until_time is not None:
            wire["untilTime"] = to_wire_time(self.until_time)
        return wire


@dataclass(frozen=True)
class OperationalFilter:
    """Caller-supplied bounds for a time-bounded operational recovery.

    Attributes:
        from_time: Lower bound of the restored window
        until_time: Upper bound of the restored window
        archive_folder_action: Archive policy (mailbox only)
        should_skip_item_permission: Skip restoring item permissions (drives and sites)
        site_owner_email: Owner assigned to restored sites (SharePoint only)
    """

    from_time: datetime | None = None
    until_time: datetime | None = None
    archive_folder_action: ArchiveFolderAction | None = None
    should_skip_item_permission: bool = False
    site_owner_email: str | None = None

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.from_time, self.until_time)


@dataclass(frozen=True)
class MailboxOperationalSpec:
    time_range: TimeRange
    archive_folder_action: ArchiveFolderAction | None = None

    def to_wire(self) -> dict[str, Any]:
        spec: dict[str, Any] = {}
        if not self.time_range.is_empty:
            spec["timeRange"] = self.time_range.to_wire()
        if self.archive_folder_action is not None:
            spec["archiveFolderAction"] = self.archive_folder_action.value
        return {
            "operationalRecoveryStage": RecoveryStage.INITIAL_OPERATIONAL_RECOVERY.value,
            "mailboxOperationalRecoverySpec": spec,
        }


@dataclass(frozen=True)
class CalendarOperationalSpec:
    time_range: TimeRange

    def to_wire(self) -> dict[str, Any]:
        return {
            "operationalRecoveryStage": RecoveryStage.INITIAL_OPERATIONAL_RECOVERY.value,
            "calendarOperationalRecoverySpec": {"timeRange": self.time_range.to_wire()},
        }


@dataclass(frozen=True)
class OneDriveOperationalSpec:
    last_modified: TimeRange
    should_skip_item_permission: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {
            "operationalRecoveryStage": RecoveryStage.INITIAL_OPERATIONAL_RECOVERY.value,
            "onedriveOperationalRecoverySpec": {
                "lastModifiedTimeFilter": self.last_modified.to_wire(),
                "shouldSkipItemPermission": self.should_skip_item_permission,
            },
        }


@dataclass(frozen=True)
class SharePointOperationalSpec:
    last_modified: TimeRange
    should_skip_item_permission: bool = False
    site_owner_email: str | None = None

    def to_wire(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "lastModifiedTimeFilter": self.last_modified.to_wire(),
            "shouldSkipItemPermission": self.should_skip_item_permission,
        }
        if self.site_owner_email:
            spec["siteOwnerEmail"] = self.site_owner_email
        return {
            "operationalRecoveryStage": RecoveryStage.INITIAL_OPERATIONAL_RECOVERY.value,
            "sharepointOperationalRecoverySpec": spec,
        }


OperationalRecoverySpec = (
    MailboxOperationalSpec
    | CalendarOperationalSpec
    | OneDriveOperationalSpec
    | SharePointOperationalSpec
)


# ---------------------------------------------------------------------------
# Recovery specs and definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecoverySpec:
    """One sub-workload's recovery spec.

    ``operational_spec`` is only set for time-bounded operational recoveries.
    When ``in_place`` is False the wire form omits ``inplaceRecoverySpec``
    entirely; the backend reads its absence as restore-to-alternate.
    """

    snappable_type: SnappableType
    sub_snappable_type: SubWorkloadType
    name_suffix: str
    recovery_point: int  # epoch milliseconds
    source_subscription_id: str
    target_subscription_id: str
    operational_spec: OperationalRecoverySpec | None = None
    in_place: bool = False

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "snappableType": self.snappable_type.value,
            "subSnappableType": self.sub_snappable_type.value,
            "recoveryPoint": self.recovery_point,
            "sourceSubscriptionId": self.source_subscription_id,
            "targetSubscriptionId": self.target_subscription_id,
        }
        if self.operational_spec is not None:
            wire["operationalRecoverySpec"] = self.operational_spec.to_wire()
        if self.in_place:
            wire["inplaceRecoverySpec"] = {"nameCollisionRule": NAME_COLLISION_RULE}
        return wire


@dataclass(frozen=True)
class BulkRecoveryDefinition:
    """A named bulk recovery request for one sub-workload."""

    name: str
    workload_selector: WorkloadSelector
    recovery_specs: tuple[RecoverySpec, ...]
    recovery_mode: str = RECOVERY_MODE
    failure_action: str = FAILURE_ACTION
    recovery_domain: str = RECOVERY_DOMAIN

    def to_wire(self) -> dict[str, Any]:
        return {
            "definition": {
                "name": self.name,
                "recoveryDomain": self.recovery_domain,
                "recoveryMode": self.recovery_mode,
                "failureAction": self.failure_action,
                "o365GroupSelector": self.workload_selector.to_wire(),
                "o365RecoverySpecs": [spec.to_wire() for spec in self.recovery_specs],
            }
        }


@dataclass(frozen=True)
class BulkRecoveryInstance:
    """Handle for one backend recovery run."""

    name: str
    instance_id: str
    taskchain_id: str | None = None
    job_id: str | None = None
    error: str | None = None


@dataclass
class LaunchReport:
    """Outcome of submitting every sub-workload of one logical recovery.

    Submissions are in table order. A failed submission does not affect its
    siblings, so a report can be partially successful.
    """

    base_name: str
    submissions: list[RecoveryResult[BulkRecoveryInstance]] = field(default_factory=list)

    @property
    def instances(self) -> list[BulkRecoveryInstance]:
        return [s.value for s in self.submissions if s.ok and s.value is not None]

    @property
    def failures(self) -> list[RecoveryResult[BulkRecoveryInstance]]:
        return [s for s in self.submissions if not s.ok]

    @property
    def all_succeeded(self) -> bool:
        return bool(self.submissions) and not self.failures


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkloadProgress:
    workload_type: str | None
    status: BulkRecoveryStatus
    failed: int = 0
    succeeded: int = 0
    in_progress: int = 0
    total: int = 0


@dataclass(frozen=True)
class GroupProgress:
    group_name: str | None
    group_id: str | None
    group_type: str | None
    workload_progress: tuple[WorkloadProgress, ...] = ()


@dataclass(frozen=True)
class BulkRecoveryProgress:
    """Shaped snapshot of a bulk recovery instance.

    ``current_step`` is None unless the status is IN_PROGRESS and
    ``canceled`` is None unless the status is CANCELED; ``to_row()`` leaves
    those keys out entirely in the other states.
    """

    instance_id: str
    status: BulkRecoveryStatus
    failed: int
    succeeded: int
    in_progress: int
    total: int
    objects_without_snapshot: int
    groups_processed: int
    total_groups: int
    create_time: str | None
    start_time: str | None
    end_time: str | None
    elapsed_time: str | None
    failure_reason: str | None
    failure_action_type: str
    current_step: str | None = None
    canceled: int | None = None
    group_progress: tuple[GroupProgress, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_row(self) -> dict[str, Any]:
        """Flatten into a single display row.

        Only the first group and its first workload are included; use
        ``group_progress`` for the full multi-group detail.
        """
        row: dict[str, Any] = {
            "instance_id": self.instance_id,
            "status": self.status.value,
        }
        if self.status is BulkRecoveryStatus.IN_PROGRESS:
            row["current_step"] = self.current_step
        row.update(
            {
                "total_objects": self.total,
                "succeeded_objects": self.succeeded,
                "failed_objects": self.failed,
                "in_progress_objects": self.in_progress,
            }
        )
        if self.status is BulkRecoveryStatus.CANCELED:
            row["canceled_objects"] = self.canceled
        row.update(
            {
                "objects_without_snapshot": self.objects_without_snapshot,
                "groups_processed": self.groups_processed,
                "total_groups": self.total_groups,
                "create_time": self.create_time,
                "start_time": self.start_time,
                "end_time": self.end_time,
                "elapsed_time": self.elapsed_time,
                "failure_reason": self.failure_reason,
                "failure_action_type": self.failure_action_type,
            }
        )

        group = self.group_progress[0] if self.group_progress else None
        workload = group.workload_progress[0] if group and group.workload_progress else None
        row["group_name"] = group.group_name if group else None
        row["group_id"] = group.group_id if group else None
        row["group_type"] = group.group_type if group else None
        row["workload_type"] = workload.workload_type if workload else None
        row["workload_status"] = workload.status.value if workload else None
        return row
