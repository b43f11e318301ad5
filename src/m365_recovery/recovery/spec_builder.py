"""Build backend recovery specs for a bulk recovery request.

A single high-level request (workload type + optional sub-workload filter)
fans out into one RecoverySpec per sub-workload through a static table:

    OneDrive   -> O365_ONEDRIVE   / NONE      ("OneDrive")
    SharePoint -> O365_SHAREPOINT / NONE      ("SharePoint")
    Exchange   -> O365_EXCHANGE   / MAILBOX   ("Mailbox")
                  O365_EXCHANGE   / CALENDAR  ("Calendar")
                  O365_EXCHANGE   / CONTACTS  ("Contacts")

Each surviving entry becomes its own backend recovery, named
"<base name>_<suffix>".

Operational (time-bounded) recoveries add a per-sub-workload operational
spec. Calendar always uses a fixed 14-day lookback from now, whatever bounds
the caller passed; the backend does not accept any other calendar window.

All validation happens here, before anything is sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from m365_recovery.core.errors import RecoveryValidationError
from m365_recovery.core.logging import get_logger
from m365_recovery.core.timeutil import to_epoch_ms
from m365_recovery.recovery.models import (
    AdGroupSelector,
    BulkRecoveryDefinition,
    CalendarOperationalSpec,
    ConfiguredGroupSelector,
    MailboxOperationalSpec,
    OneDriveOperationalSpec,
    OperationalFilter,
    OperationalRecoverySpec,
    RecoverySpec,
    SharePointOperationalSpec,
    SnappableType,
    SubWorkloadType,
    TimeRange,
    WorkloadSelector,
    WorkloadType,
)

logger = get_logger(__name__)

CALENDAR_LOOKBACK = timedelta(days=14)


@dataclass(frozen=True)
class WorkloadEntry:
    """One row of the workload table."""

    snappable_type: SnappableType
    sub_snappable_type: SubWorkloadType
    name_suffix: str


WORKLOAD_TABLE: dict[WorkloadType, tuple[WorkloadEntry, ...]] = {
    WorkloadType.ONEDRIVE: (
        WorkloadEntry(SnappableType.O365_ONEDRIVE, SubWorkloadType.NONE, "OneDrive"),
    ),
    WorkloadType.SHAREPOINT: (
        WorkloadEntry(SnappableType.O365_SHAREPOINT, SubWorkloadType.NONE, "SharePoint"),
    ),
    WorkloadType.EXCHANGE: (
        WorkloadEntry(SnappableType.O365_EXCHANGE, SubWorkloadType.MAILBOX, "Mailbox"),
        WorkloadEntry(SnappableType.O365_EXCHANGE, SubWorkloadType.CALENDAR, "Calendar"),
        WorkloadEntry(SnappableType.O365_EXCHANGE, SubWorkloadType.CONTACTS, "Contacts"),
    ),
}


def workload_entries(
    workload_type: WorkloadType,
    sub_workload_type: SubWorkloadType | None = None,
) -> list[WorkloadEntry]:
    """Return the table entries for a workload, optionally filtered.

    Raises:
        RecoveryValidationError: If the filter matches nothing for this workload
    """
    entries = list(WORKLOAD_TABLE[workload_type])
    if sub_workload_type is None:
        return entries

    filtered = []
    if sub_workload_type is not SubWorkloadType.NONE:
        filtered = [e for e in entries if e.sub_snappable_type is sub_workload_type]
    if not filtered:
        valid = [
            e.sub_snappable_type.value
            for e in entries
            if e.sub_snappable_type is not SubWorkloadType.NONE
        ]
        hint = f"Valid values: {', '.join(valid)}" if valid else "Omit the sub-workload type"
        raise RecoveryValidationError(
            f"Sub-workload type '{sub_workload_type.value}' does not apply to "
            f"{workload_type.value}. {hint}."
        )
    return filtered


def build_workload_selector(
    workload_type: WorkloadType,
    ad_group_id: str | None = None,
    configured_group_name: str | None = None,
) -> WorkloadSelector:
    """Pick the group selector variant that is legal for the workload.

    OneDrive and Exchange select accounts by directory group id; SharePoint
    selects sites by configured group name.

    Raises:
        RecoveryValidationError: If the required selector is missing or the
            other variant was supplied instead
    """
    match workload_type:
        case WorkloadType.ONEDRIVE | WorkloadType.EXCHANGE:
            if configured_group_name:
                raise RecoveryValidationError(
                    f"{workload_type.value} recoveries select accounts by AD group id, "
                    "not by configured group name."
                )
            if not ad_group_id or not ad_group_id.strip():
                raise RecoveryValidationError(
                    f"An AD group id is required for {workload_type.value} recoveries."
                )
            return AdGroupSelector(group_id=ad_group_id.strip())
        case WorkloadType.SHAREPOINT:
            if ad_group_id:
                raise RecoveryValidationError(
                    "SharePoint recoveries select sites by configured group name, "
                    "not by AD group id."
                )
            if not configured_group_name or not configured_group_name.strip():
                raise RecoveryValidationError(
                    "A configured group name is required for SharePoint recoveries."
                )
            return ConfiguredGroupSelector(group_name=configured_group_name.strip())
        case _:
            raise ValueError(f"Unhandled workload type: {workload_type!r}")


def _validate_operational_filter(
    workload_type: WorkloadType,
    entries: list[WorkloadEntry],
    op_filter: OperationalFilter,
) -> None:
    if (
        op_filter.from_time is not None
        and op_filter.until_time is not None
        and op_filter.from_time > op_filter.until_time
    ):
        raise RecoveryValidationError(
            "from_time must not be later than until_time for an operational recovery."
        )
    if op_filter.site_owner_email and workload_type is not WorkloadType.SHAREPOINT:
        raise RecoveryValidationError("site_owner_email only applies to SharePoint recoveries.")
    if op_filter.archive_folder_action is not None and workload_type is not WorkloadType.EXCHANGE:
        raise RecoveryValidationError(
            "archive_folder_action only applies to Exchange mailbox recoveries."
        )
    if op_filter.archive_folder_action is not None and not any(
        entry.sub_snappable_type is SubWorkloadType.MAILBOX for entry in entries
    ):
        raise RecoveryValidationError(
            "archive_folder_action needs the Mailbox sub-workload; "
            "it has no effect on Calendar or Contacts recoveries."
        )

    has_bounds = not op_filter.time_range.is_empty
    for entry in entries:
        match entry.sub_snappable_type:
            case SubWorkloadType.MAILBOX:
                if not has_bounds and op_filter.archive_folder_action is None:
                    raise RecoveryValidationError(
                        "An operational mailbox recovery needs at least one of "
                        "from_time, until_time or archive_folder_action."
                    )
            case SubWorkloadType.NONE:
                if not has_bounds:
                    raise RecoveryValidationError(
                        f"An operational {workload_type.value} recovery needs at least "
                        "one of from_time or until_time."
                    )
            case SubWorkloadType.CALENDAR | SubWorkloadType.CONTACTS:
                pass


def _operational_spec_for(
    entry: WorkloadEntry,
    op_filter: OperationalFilter,
    now: datetime,
) -> OperationalRecoverySpec | None:
    match (entry.snappable_type, entry.sub_snappable_type):
        case (SnappableType.O365_EXCHANGE, SubWorkloadType.MAILBOX):
            return MailboxOperationalSpec(
                time_range=op_filter.time_range,
                archive_folder_action=op_filter.archive_folder_action,
            )
        case (SnappableType.O365_EXCHANGE, SubWorkloadType.CALENDAR):
            return CalendarOperationalSpec(time_range=TimeRange(from_time=now - CALENDAR_LOOKBACK))
        case (SnappableType.O365_EXCHANGE, SubWorkloadType.CONTACTS):
            # Contacts have no time dimension and are restored in full up front
            return None
        case (SnappableType.O365_ONEDRIVE, _):
            return OneDriveOperationalSpec(
                last_modified=op_filter.time_range,
                should_skip_item_permission=op_filter.should_skip_item_permission,
            )
        case (SnappableType.O365_SHAREPOINT, _):
            return SharePointOperationalSpec(
                last_modified=op_filter.time_range,
                should_skip_item_permission=op_filter.should_skip_item_permission,
                site_owner_email=op_filter.site_owner_email,
            )
        case _:
            raise ValueError(f"No operational recovery mapping for {entry!r}")


def build_recovery_specs(
    workload_type: WorkloadType,
    recovery_point: datetime,
    subscription_id: str,
    *,
    sub_workload_type: SubWorkloadType | None = None,
    operational: OperationalFilter | None = None,
    in_place: bool = False,
    now: datetime | None = None,
) -> list[RecoverySpec]:
    """Produce one RecoverySpec per sub-workload, in table order.

    Args:
        workload_type: Workload to recover
        recovery_point: Point in time to restore to
        subscription_id: Resolved subscription id (source and target)
        sub_workload_type: Restrict to one sub-workload (Exchange only)
        operational: Bounds for a time-bounded operational recovery; None for
            a full recovery
        in_place: Restore to the original location, overwriting collisions
        now: Clock override for the calendar lookback window

    Returns:
        Ordered list of RecoverySpec

    Raises:
        RecoveryValidationError: If the combination of inputs is not legal
    """
    entries = workload_entries(workload_type, sub_workload_type)
    if operational is not None:
        _validate_operational_filter(workload_type, entries, operational)

    current = now or datetime.now(UTC)
    point_ms = to_epoch_ms(recovery_point)

    specs = [
        RecoverySpec(
            snappable_type=entry.snappable_type,
            sub_snappable_type=entry.sub_snappable_type,
            name_suffix=entry.name_suffix,
            recovery_point=point_ms,
            source_subscription_id=subscription_id,
            target_subscription_id=subscription_id,
            operational_spec=(
                _operational_spec_for(entry, operational, current)
                if operational is not None
                else None
            ),
            in_place=in_place,
        )
        for entry in entries
    ]

    logger.debug(
        "Recovery specs built",
        workload=workload_type.value,
        sub_workloads=[s.name_suffix for s in specs],
        operational=operational is not None,
        in_place=in_place,
    )
    return specs


def validate_request(
    name: str,
    workload_type: WorkloadType,
    *,
    sub_workload_type: SubWorkloadType | None = None,
    ad_group_id: str | None = None,
    configured_group_name: str | None = None,
    operational: OperationalFilter | None = None,
) -> WorkloadSelector:
    """Run every local check for a recovery request without building specs.

    Lets callers reject a bad request before resolving the subscription, so
    that invalid input never costs a network call.

    Returns:
        The validated group selector

    Raises:
        RecoveryValidationError: On the first failed check
    """
    if not name or not name.strip():
        raise RecoveryValidationError("A recovery name is required.")
    selector = build_workload_selector(workload_type, ad_group_id, configured_group_name)
    entries = workload_entries(workload_type, sub_workload_type)
    if operational is not None:
        _validate_operational_filter(workload_type, entries, operational)
    return selector


def build_definitions(
    base_name: str,
    selector: WorkloadSelector,
    specs: list[RecoverySpec],
) -> list[BulkRecoveryDefinition]:
    """Wrap each spec in its own named definition ("<base_name>_<suffix>").

    Raises:
        RecoveryValidationError: If the base name is blank
    """
    if not base_name or not base_name.strip():
        raise RecoveryValidationError("A recovery name is required.")
    name = base_name.strip()
    return [
        BulkRecoveryDefinition(
            name=f"{name}_{spec.name_suffix}",
            workload_selector=selector,
            recovery_specs=(spec,),
        )
        for spec in specs
    ]
