"""Tests for recovery/spec_builder.py and the wire forms in recovery/models.py.

Covers the workload table fan-out, group selector rules, operational spec
construction (including the fixed calendar lookback) and request validation.
"""

from datetime import UTC, datetime, timedelta

import pytest

from m365_recovery.core.errors import RecoveryValidationError
from m365_recovery.recovery.models import (
    AdGroupSelector,
    ArchiveFolderAction,
    CalendarOperationalSpec,
    ConfiguredGroupSelector,
    MailboxOperationalSpec,
    OperationalFilter,
    SnappableType,
    SubWorkloadType,
    WorkloadType,
)
from m365_recovery.recovery.spec_builder import (
    CALENDAR_LOOKBACK,
    build_definitions,
    build_recovery_specs,
    build_workload_selector,
    validate_request,
    workload_entries,
)

SUB_ID = "5a1c0e2f-0d3b-4c8e-9f7a-6b5c4d3e2f10"
RECOVERY_POINT = datetime(2024, 1, 1, tzinfo=UTC)
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class TestWorkloadEntries:
    """Tests for the workload table lookup."""

    def test_exchange_fans_out_in_order(self) -> None:
        entries = workload_entries(WorkloadType.EXCHANGE)
        assert [e.name_suffix for e in entries] == ["Mailbox", "Calendar", "Contacts"]
        assert {e.snappable_type for e in entries} == {SnappableType.O365_EXCHANGE}

    @pytest.mark.parametrize(
        ("workload", "snappable", "suffix"),
        [
            (WorkloadType.ONEDRIVE, SnappableType.O365_ONEDRIVE, "OneDrive"),
            (WorkloadType.SHAREPOINT, SnappableType.O365_SHAREPOINT, "SharePoint"),
        ],
    )
    def test_single_type_workloads(
        self, workload: WorkloadType, snappable: SnappableType, suffix: str
    ) -> None:
        entries = workload_entries(workload)
        assert len(entries) == 1
        assert entries[0].snappable_type is snappable
        assert entries[0].sub_snappable_type is SubWorkloadType.NONE
        assert entries[0].name_suffix == suffix

    def test_filter_to_one_sub_workload(self) -> None:
        entries = workload_entries(WorkloadType.EXCHANGE, SubWorkloadType.CALENDAR)
        assert [e.name_suffix for e in entries] == ["Calendar"]

    def test_filter_that_matches_nothing(self) -> None:
        with pytest.raises(RecoveryValidationError, match="does not apply to OneDrive"):
            workload_entries(WorkloadType.ONEDRIVE, SubWorkloadType.MAILBOX)

    def test_none_filter_is_rejected(self) -> None:
        with pytest.raises(RecoveryValidationError, match="Valid values: MAILBOX"):
            workload_entries(WorkloadType.EXCHANGE, SubWorkloadType.NONE)


class TestBuildWorkloadSelector:
    """Tests for build_workload_selector()."""

    @pytest.mark.parametrize("workload", [WorkloadType.ONEDRIVE, WorkloadType.EXCHANGE])
    def test_ad_group_for_accounts(self, workload: WorkloadType) -> None:
        selector = build_workload_selector(workload, ad_group_id=" grp-123 ")
        assert selector == AdGroupSelector(group_id="grp-123")
        assert selector.to_wire() == {"adGroupSelector": {"groupId": "grp-123"}}

    def test_configured_group_for_sharepoint(self) -> None:
        selector = build_workload_selector(WorkloadType.SHAREPOINT, configured_group_name="Sites")
        assert selector == ConfiguredGroupSelector(group_name="Sites")
        assert selector.to_wire() == {"configuredGroupSelector": {"groupName": "Sites"}}

    def test_sharepoint_rejects_ad_group(self) -> None:
        with pytest.raises(RecoveryValidationError, match="not by AD group id"):
            build_workload_selector(
                WorkloadType.SHAREPOINT, ad_group_id="grp-1", configured_group_name="Sites"
            )

    def test_onedrive_rejects_configured_group(self) -> None:
        with pytest.raises(RecoveryValidationError, match="not by configured group name"):
            build_workload_selector(WorkloadType.ONEDRIVE, configured_group_name="Sites")

    def test_missing_selector(self) -> None:
        with pytest.raises(RecoveryValidationError, match="AD group id is required"):
            build_workload_selector(WorkloadType.EXCHANGE, ad_group_id="  ")


class TestBuildRecoverySpecs:
    """Tests for build_recovery_specs()."""

    def test_full_onedrive_in_place(self) -> None:
        specs = build_recovery_specs(
            WorkloadType.ONEDRIVE, RECOVERY_POINT, SUB_ID, in_place=True
        )

        assert len(specs) == 1
        assert specs[0].to_wire() == {
            "snappableType": "O365_ONEDRIVE",
            "subSnappableType": "NONE",
            "recoveryPoint": 1704067200000,
            "sourceSubscriptionId": SUB_ID,
            "targetSubscriptionId": SUB_ID,
            "inplaceRecoverySpec": {"nameCollisionRule": "OVERWRITE"},
        }

    def test_not_in_place_omits_inplace_spec(self) -> None:
        specs = build_recovery_specs(WorkloadType.SHAREPOINT, RECOVERY_POINT, SUB_ID)

        wire = specs[0].to_wire()
        assert "inplaceRecoverySpec" not in wire
        assert "operationalRecoverySpec" not in wire

    def test_source_and_target_subscription_are_equal(self) -> None:
        for spec in build_recovery_specs(WorkloadType.EXCHANGE, RECOVERY_POINT, SUB_ID):
            assert spec.source_subscription_id == spec.target_subscription_id == SUB_ID

    def test_operational_exchange_fan_out(self) -> None:
        operational = OperationalFilter(from_time=datetime(2024, 6, 1, tzinfo=UTC))

        specs = build_recovery_specs(
            WorkloadType.EXCHANGE, RECOVERY_POINT, SUB_ID, operational=operational, now=NOW
        )

        assert [s.sub_snappable_type for s in specs] == [
            SubWorkloadType.MAILBOX,
            SubWorkloadType.CALENDAR,
            SubWorkloadType.CONTACTS,
        ]
        mailbox, calendar, contacts = specs
        assert isinstance(mailbox.operational_spec, MailboxOperationalSpec)
        assert mailbox.to_wire()["operationalRecoverySpec"] == {
            "operationalRecoveryStage": "INITIAL_OPERATIONAL_RECOVERY",
            "mailboxOperationalRecoverySpec": {
                "timeRange": {"fromTime": "2024-06-01T00:00:00.000Z"},
            },
        }
        assert isinstance(calendar.operational_spec, CalendarOperationalSpec)
        assert contacts.operational_spec is None
        assert "operationalRecoverySpec" not in contacts.to_wire()

    def test_calendar_uses_fixed_lookback(self) -> None:
        operational = OperationalFilter(
            from_time=datetime(2020, 1, 1, tzinfo=UTC),
            until_time=datetime(2020, 2, 1, tzinfo=UTC),
        )

        (spec,) = build_recovery_specs(
            WorkloadType.EXCHANGE,
            RECOVERY_POINT,
            SUB_ID,
            sub_workload_type=SubWorkloadType.CALENDAR,
            operational=operational,
            now=NOW,
        )

        assert spec.operational_spec.time_range.from_time == NOW - timedelta(days=14)
        assert spec.operational_spec.time_range.until_time is None
        assert spec.to_wire()["operationalRecoverySpec"]["calendarOperationalRecoverySpec"] == {
            "timeRange": {"fromTime": "2024-06-01T12:00:00.000Z"}
        }
        assert CALENDAR_LOOKBACK == timedelta(days=14)

    def test_mailbox_archive_only(self) -> None:
        operational = OperationalFilter(archive_folder_action=ArchiveFolderAction.EXCLUDE_ARCHIVE)

        (spec,) = build_recovery_specs(
            WorkloadType.EXCHANGE,
            RECOVERY_POINT,
            SUB_ID,
            sub_workload_type=SubWorkloadType.MAILBOX,
            operational=operational,
        )

        inner = spec.to_wire()["operationalRecoverySpec"]["mailboxOperationalRecoverySpec"]
        assert inner == {"archiveFolderAction": "EXCLUDE_ARCHIVE"}

    def test_onedrive_operational_spec(self) -> None:
        operational = OperationalFilter(
            from_time=datetime(2024, 5, 1, tzinfo=UTC),
            until_time=datetime(2024, 5, 31, tzinfo=UTC),
            should_skip_item_permission=True,
        )

        (spec,) = build_recovery_specs(
            WorkloadType.ONEDRIVE, RECOVERY_POINT, SUB_ID, operational=operational
        )

        assert spec.to_wire()["operationalRecoverySpec"] == {
            "operationalRecoveryStage": "INITIAL_OPERATIONAL_RECOVERY",
            "onedriveOperationalRecoverySpec": {
                "lastModifiedTimeFilter": {
                    "fromTime": "2024-05-01T00:00:00.000Z",
                    "untilTime": "2024-05-31T00:00:00.000Z",
                },
                "shouldSkipItemPermission": True,
            },
        }

    def test_sharepoint_operational_spec_with_owner(self) -> None:
        operational = OperationalFilter(
            until_time=datetime(2024, 5, 31, tzinfo=UTC),
            site_owner_email="owner@contoso.com",
        )

        (spec,) = build_recovery_specs(
            WorkloadType.SHAREPOINT, RECOVERY_POINT, SUB_ID, operational=operational
        )

        inner = spec.to_wire()["operationalRecoverySpec"]["sharepointOperationalRecoverySpec"]
        assert inner == {
            "lastModifiedTimeFilter": {"untilTime": "2024-05-31T00:00:00.000Z"},
            "shouldSkipItemPermission": False,
            "siteOwnerEmail": "owner@contoso.com",
        }

    def test_mailbox_needs_some_bound(self) -> None:
        with pytest.raises(RecoveryValidationError, match="operational mailbox recovery"):
            build_recovery_specs(
                WorkloadType.EXCHANGE,
                RECOVERY_POINT,
                SUB_ID,
                sub_workload_type=SubWorkloadType.MAILBOX,
                operational=OperationalFilter(),
            )

    def test_calendar_only_needs_no_bounds(self) -> None:
        specs = build_recovery_specs(
            WorkloadType.EXCHANGE,
            RECOVERY_POINT,
            SUB_ID,
            sub_workload_type=SubWorkloadType.CALENDAR,
            operational=OperationalFilter(),
            now=NOW,
        )
        assert len(specs) == 1

    def test_onedrive_needs_time_bound(self) -> None:
        with pytest.raises(RecoveryValidationError, match="from_time or until_time"):
            build_recovery_specs(
                WorkloadType.ONEDRIVE,
                RECOVERY_POINT,
                SUB_ID,
                operational=OperationalFilter(should_skip_item_permission=True),
            )

    def test_reversed_window_rejected(self) -> None:
        operational = OperationalFilter(
            from_time=datetime(2024, 6, 1, tzinfo=UTC),
            until_time=datetime(2024, 5, 1, tzinfo=UTC),
        )
        with pytest.raises(RecoveryValidationError, match="must not be later"):
            build_recovery_specs(
                WorkloadType.ONEDRIVE, RECOVERY_POINT, SUB_ID, operational=operational
            )

    def test_site_owner_only_for_sharepoint(self) -> None:
        operational = OperationalFilter(
            from_time=datetime(2024, 6, 1, tzinfo=UTC), site_owner_email="owner@contoso.com"
        )
        with pytest.raises(RecoveryValidationError, match="site_owner_email"):
            build_recovery_specs(
                WorkloadType.ONEDRIVE, RECOVERY_POINT, SUB_ID, operational=operational
            )

    def test_archive_action_only_for_exchange(self) -> None:
        operational = OperationalFilter(
            from_time=datetime(2024, 6, 1, tzinfo=UTC),
            archive_folder_action=ArchiveFolderAction.ARCHIVE_ONLY,
        )
        with pytest.raises(RecoveryValidationError, match="archive_folder_action"):
            build_recovery_specs(
                WorkloadType.SHAREPOINT, RECOVERY_POINT, SUB_ID, operational=operational
            )

    @pytest.mark.parametrize("sub_workload", [SubWorkloadType.CALENDAR, SubWorkloadType.CONTACTS])
    def test_archive_action_needs_mailbox(self, sub_workload: SubWorkloadType) -> None:
        operational = OperationalFilter(
            from_time=datetime(2024, 6, 1, tzinfo=UTC),
            archive_folder_action=ArchiveFolderAction.EXCLUDE_ARCHIVE,
        )
        with pytest.raises(RecoveryValidationError, match="needs the Mailbox sub-workload"):
            build_recovery_specs(
                WorkloadType.EXCHANGE,
                RECOVERY_POINT,
                SUB_ID,
                sub_workload_type=sub_workload,
                operational=operational,
            )

    def test_archive_action_rejected_before_lookup(self) -> None:
        with pytest.raises(RecoveryValidationError, match="needs the Mailbox sub-workload"):
            validate_request(
                "Ops1",
                WorkloadType.EXCHANGE,
                sub_workload_type=SubWorkloadType.CALENDAR,
                ad_group_id="grp-123",
                operational=OperationalFilter(
                    archive_folder_action=ArchiveFolderAction.NO_ACTION
                ),
            )


class TestValidateRequest:
    """Tests for validate_request()."""

    def test_returns_selector(self) -> None:
        selector = validate_request("Migration1", WorkloadType.ONEDRIVE, ad_group_id="grp-123")
        assert selector == AdGroupSelector(group_id="grp-123")

    def test_blank_name(self) -> None:
        with pytest.raises(RecoveryValidationError, match="name is required"):
            validate_request("  ", WorkloadType.ONEDRIVE, ad_group_id="grp-123")

    def test_checks_operational_filter(self) -> None:
        with pytest.raises(RecoveryValidationError):
            validate_request(
                "Migration1",
                WorkloadType.EXCHANGE,
                sub_workload_type=SubWorkloadType.MAILBOX,
                ad_group_id="grp-123",
                operational=OperationalFilter(),
            )


class TestBuildDefinitions:
    """Tests for build_definitions() and BulkRecoveryDefinition.to_wire()."""

    def test_one_definition_per_spec(self) -> None:
        selector = AdGroupSelector(group_id="grp-123")
        specs = build_recovery_specs(WorkloadType.EXCHANGE, RECOVERY_POINT, SUB_ID)

        definitions = build_definitions("Migration1", selector, specs)

        assert [d.name for d in definitions] == [
            "Migration1_Mailbox",
            "Migration1_Calendar",
            "Migration1_Contacts",
        ]
        assert all(len(d.recovery_specs) == 1 for d in definitions)

    def test_definition_wire_form(self) -> None:
        selector = AdGroupSelector(group_id="grp-123")
        specs = build_recovery_specs(WorkloadType.ONEDRIVE, RECOVERY_POINT, SUB_ID, in_place=True)

        (definition,) = build_definitions(" Migration1 ", selector, specs)
        wire = definition.to_wire()["definition"]

        assert wire["name"] == "Migration1_OneDrive"
        assert wire["recoveryDomain"] == "O365"
        assert wire["recoveryMode"] == "AD_HOC"
        assert wire["failureAction"] == "IGNORE_AND_CONTINUE"
        assert wire["o365GroupSelector"] == {"adGroupSelector": {"groupId": "grp-123"}}
        assert wire["o365RecoverySpecs"][0]["recoveryPoint"] == 1704067200000

    def test_blank_base_name(self) -> None:
        with pytest.raises(RecoveryValidationError):
            build_definitions("", AdGroupSelector(group_id="g"), [])
