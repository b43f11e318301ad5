"""Bearer token providers for the backup platform's GraphQL API.

Two providers share one interface, ``get_access_token()``:

- ServiceAccountAuth exchanges a service account's client id and secret for a
  bearer token at ``{base_url}/api/client_token`` and caches it until shortly
  before it expires.
- StaticTokenAuth wraps a token obtained elsewhere (for example by a session
  manager that owns the login lifecycle).

Usage:
    from m365_recovery.auth.service_account import ServiceAccountAuth

    auth = ServiceAccountAuth(
        base_url="https://example.my.rubrik.com",
        client_id="client|abc123",
        client_secret=os.environ["RSC_CLIENT_SECRET"],
    )
    token = auth.get_access_token()
"""

import random
import threading
import time
from typing import Protocol

import requests

from m365_recovery.core.errors import AuthenticationError
from m365_recovery.core.logging import get_logger

logger = get_logger(__name__)

# Retry configuration for token requests
TOKEN_MAX_RETRIES = 3
TOKEN_RETRY_DELAYS = [1.0, 2.0, 4.0]  # Exponential backoff with jitter

# Assumed lifetime when the token endpoint does not report expires_in
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# Refresh this many seconds before the reported expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class TokenProvider(Protocol):
    """Anything that can hand out a bearer token."""

    def get_access_token(self) -> str: ...


class StaticTokenAuth:
    """Token provider for an externally managed bearer token."""

    def __init__(self, token: str):
        if not token or not token.strip():
            raise ValueError("A static access token cannot be empty")
        self._token = token.strip()

    def get_access_token(self) -> str:
        return self._token


class ServiceAccountAuth:
    """Obtains and caches a bearer token for a platform service account.

    Attributes:
        base_url: Platform base URL (e.g. https://example.my.rubrik.com)
        client_id: Service account client id
        timeout: Token request timeout in seconds

    Security notes:
        - The client secret is kept in memory only and never logged
        - Tokens are never written to disk
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        """Initialize the service account token provider.

        Args:
            base_url: Platform base URL
            client_id: Service account client id
            client_secret: Service account client secret
            timeout: Token request timeout in seconds
            session: Optional requests session (shared connection pool)

        Raises:
            ValueError: If client_id or client_secret is empty
        """
        if not client_id or not client_id.strip():
            raise ValueError(
                "client_id is required. Create a service account in the platform's "
                "User Management page and copy its client id into config.yaml."
            )
        if not client_secret:
            raise ValueError(
                "client_secret is required. Export it in the environment variable "
                "named by rsc.client_secret_env (default RSC_CLIENT_SECRET)."
            )

        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self._client_secret = client_secret
        self.timeout = timeout
        self.session = session or requests.Session()

        self._token: str | None = None
        self._expires_at: float = 0.0
        self._lock = threading.Lock()

        logger.debug(
            "ServiceAccountAuth initialized",
            base_url=self.base_url,
            client_id=client_id[:12] + "...",
        )

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/api/client_token"

    def get_access_token(self) -> str:
        """Return a valid bearer token, requesting a new one if needed.

        Raises:
            AuthenticationError: If the token endpoint rejects the credentials
                or cannot be reached after retries
        """
        with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token

            payload = self._request_token_with_retry()
            token = payload.get("access_token")
            if not token:
                raise AuthenticationError(
                    "Authentication failed: 'access_token' not found in the token response. "
                    "Check that the service account is enabled."
                )

            lifetime = payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
            try:
                lifetime = float(lifetime)
            except (TypeError, ValueError):
                lifetime = DEFAULT_TOKEN_LIFETIME_SECONDS
            self._token = token
            self._expires_at = time.monotonic() + max(lifetime - TOKEN_EXPIRY_MARGIN_SECONDS, 0)

            logger.info("Service account token acquired", expires_in=lifetime)
            return token

    def invalidate(self) -> None:
        """Forget the cached token so the next call requests a fresh one."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _request_token_with_retry(self) -> dict:
        """POST the client credentials, retrying transient network errors.

        Returns:
            Parsed JSON body of the token response

        Raises:
            AuthenticationError: On 4xx responses or after exhausting retries
        """
        body = {"client_id": self.client_id, "client_secret": self._client_secret}
        last_error: Exception | None = None

        for attempt in range(TOKEN_MAX_RETRIES):
            try:
                response = self.session.post(self.token_url, json=body, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                last_error = e
                if attempt < TOKEN_MAX_RETRIES - 1:
                    delay = TOKEN_RETRY_DELAYS[attempt]
                    jitter = delay * 0.2 * (2 * random.random() - 1)
                    actual_delay = delay + jitter
                    logger.warning(
                        "Token request failed, retrying",
                        attempt=attempt + 1,
                        max_retries=TOKEN_MAX_RETRIES,
                        delay=actual_delay,
                        error=str(e),
                    )
                    time.sleep(actual_delay)
                continue

            if response.status_code in (400, 401, 403):
                logger.error("Token request rejected", status_code=response.status_code)
                raise AuthenticationError(
                    f"Service account credentials were rejected ({response.status_code}). "
                    "Verify rsc.client_id and the client secret environment variable."
                )
            if response.status_code >= 400:
                last_error = AuthenticationError(
                    f"Token endpoint returned HTTP {response.status_code}"
                )
                if attempt < TOKEN_MAX_RETRIES - 1:
                    time.sleep(TOKEN_RETRY_DELAYS[attempt])
                continue

            try:
                return response.json()
            except ValueError as e:
                raise AuthenticationError(
                    f"Token endpoint {self.token_url} returned a non-JSON body"
                ) from e

        raise AuthenticationError(
            f"Cannot reach token endpoint {self.token_url} after {TOKEN_MAX_RETRIES} "
            f"attempts: {last_error}. Check rsc.base_url and your network connection."
        ) from last_error
