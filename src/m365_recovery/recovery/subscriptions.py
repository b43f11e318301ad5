"""Resolve a subscription display name to its backend identifier.

Every recovery command takes a subscription *name* at the user-facing
boundary. Resolution lists all Microsoft 365 organizations visible to the
caller and requires exactly one active match; anything else is an error, and
no recovery call is made.

Usage:
    resolver = SubscriptionResolver(client)
    subscription = resolver.resolve("Contoso")
    print(subscription.id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from m365_recovery.core.errors import SubscriptionResolutionError
from m365_recovery.core.logging import get_logger
from m365_recovery.graphql.operations import O365_ORGS, O365_ORGS_QUERY
from m365_recovery.recovery.models import SubscriptionRef

if TYPE_CHECKING:
    from m365_recovery.graphql.client import RscClient

logger = get_logger(__name__)

ACTIVE_STATUS = "ACTIVE"


class SubscriptionResolver:
    """Looks up Microsoft 365 subscriptions by display name.

    Results are not cached: each top-level operation resolves afresh so a
    renamed or deactivated subscription is noticed immediately.
    """

    def __init__(self, client: RscClient) -> None:
        self._client = client

    def list_organizations(self) -> list[dict[str, Any]]:
        """Return every organization node visible to the caller."""
        return self._client.paginate_nodes(
            O365_ORGS_QUERY,
            connection_path="o365Orgs",
            operation_name=O365_ORGS,
        )

    def resolve(self, subscription_name: str) -> SubscriptionRef:
        """Resolve a subscription name to exactly one active organization.

        Args:
            subscription_name: Display name of the subscription

        Returns:
            The matching SubscriptionRef

        Raises:
            SubscriptionResolutionError: If zero or more than one active
                organization has this name
            GraphQLAPIError: If the organization listing fails
        """
        orgs = self.list_organizations()
        matches = [
            org
            for org in orgs
            if org.get("name") == subscription_name
            and str(org.get("status") or "").upper() == ACTIVE_STATUS
        ]

        if len(matches) != 1:
            logger.warning(
                "Subscription resolution failed",
                subscription=subscription_name,
                active_matches=len(matches),
                organizations_seen=len(orgs),
            )
            raise SubscriptionResolutionError(
                f"Found zero or more than 1 subscriptions named '{subscription_name}' "
                f"({len(matches)} active matches). Check the subscription name and that "
                "exactly one active organization uses it.",
                subscription_name=subscription_name,
                match_count=len(matches),
            )

        org = matches[0]
        logger.debug("Subscription resolved", subscription=subscription_name, id=org["id"])
        return SubscriptionRef(name=subscription_name, id=org["id"])
