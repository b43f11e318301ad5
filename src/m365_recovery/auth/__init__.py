"""Authentication module for the backup platform's GraphQL API.

Provides bearer token providers: a service account client-credentials flow
and a wrapper for externally managed tokens.

Usage:
    from m365_recovery.auth import ServiceAccountAuth

    auth = ServiceAccountAuth(base_url, client_id, client_secret)
    token = auth.get_access_token()
"""

from m365_recovery.auth.service_account import (
    ServiceAccountAuth,
    StaticTokenAuth,
    TokenProvider,
)

__all__ = ["ServiceAccountAuth", "StaticTokenAuth", "TokenProvider"]
