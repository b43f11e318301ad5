"""GraphQL transport for the backup platform.

Usage:
    from m365_recovery.graphql import RscClient

    client = RscClient(auth, base_url)
    data = client.execute(query, variables, operation_name="O365Orgs")
"""

from m365_recovery.graphql.client import RscClient

__all__ = ["RscClient"]
