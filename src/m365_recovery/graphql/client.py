"""GraphQL client for the backup platform with retry logic and error handling.

This module provides the single HTTP seam of the package:
- Automatic retry with exponential backoff for transient errors
- Proper handling of rate limits (429 responses)
- GraphQL error envelopes surfaced as typed exceptions
- Cursor pagination over connection ``nodes``/``pageInfo``

There is no ambient "current connection": every component takes an RscClient
explicitly, so several tenants or sessions can be driven side by side.

Usage:
    from m365_recovery.auth import ServiceAccountAuth
    from m365_recovery.graphql.client import RscClient

    auth = ServiceAccountAuth(base_url, client_id, client_secret)
    client = RscClient(auth, base_url)

    data = client.execute(QUERY, {"input": {...}}, operation_name="BulkRecoveryProgress")
"""

import random
import time
from typing import Any

import requests

from m365_recovery.auth.service_account import TokenProvider
from m365_recovery.core.errors import (
    AuthenticationError,
    EmptyResponseError,
    GraphQLAPIError,
    GraphQLResponseError,
    RateLimitExceeded,
)
from m365_recovery.core.logging import get_logger
from m365_recovery.core.rate_limiter import get_bucket

logger = get_logger(__name__)

GRAPHQL_PATH = "/api/graphql"

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]  # Exponential backoff delays in seconds
DEFAULT_TIMEOUT = 60.0

# Proactive rate limiting; the platform throttles well above this
DEFAULT_REQUESTS_PER_SECOND = 5.0

# Page size for connection queries
DEFAULT_PAGE_SIZE = 100


class RscClient:
    """GraphQL client with retry logic and error handling.

    Attributes:
        auth: Token provider supplying the bearer token
        base_url: Platform base URL
        max_retries: Maximum number of retry attempts
        retry_delays: Delay times (seconds) for each retry
        timeout: Per-request timeout in seconds

    Example:
        client = RscClient(auth, "https://example.my.rubrik.com")
        data = client.execute("query { o365Orgs { nodes { id name } } }")
    """

    def __init__(
        self,
        auth: TokenProvider,
        base_url: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
        session: requests.Session | None = None,
    ):
        """Initialize the GraphQL client.

        Args:
            auth: Token provider (ServiceAccountAuth or StaticTokenAuth)
            base_url: Platform base URL; the GraphQL path is appended
            max_retries: Maximum number of retry attempts for transient errors
            retry_delays: List of delay times in seconds for each retry
            timeout: Request timeout in seconds
            requests_per_second: Proactive rate limit for this endpoint
            session: Optional requests session (connection pooling)
        """
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.timeout = timeout
        self.session = session or requests.Session()

        capacity = max(int(requests_per_second), 1)
        self._rate_bucket = get_bucket(
            name=f"rsc_graphql:{self.base_url}",
            rate=requests_per_second,
            capacity=capacity,
        )

        logger.debug(
            "RscClient initialized",
            base_url=self.base_url,
            max_retries=self.max_retries,
        )

    @property
    def url(self) -> str:
        return self.base_url + GRAPHQL_PATH

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with the current bearer token.

        Raises:
            AuthenticationError: If a token cannot be acquired
        """
        try:
            token = self.auth.get_access_token()
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error("Failed to get access token", error=str(e))
            raise AuthenticationError(
                f"Cannot authenticate with {self.base_url}: {e}. "
                "Run 'm365-recovery validate-config' to check your settings."
            ) from e

        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_error_response(self, response: requests.Response, operation: str) -> None:
        """Raise a GraphQLAPIError describing a non-retryable HTTP failure.

        GraphQL servers often return 4xx with an errors envelope, so that is
        preferred over the raw body when present.
        """
        messages = _extract_error_messages(response)
        fallback = response.text or f"HTTP {response.status_code}"
        error_message = messages[0] if messages else fallback

        logger.error(
            "GraphQL API error",
            operation=operation,
            status_code=response.status_code,
            error_message=error_message[:200],
        )

        if response.status_code == 401:
            raise GraphQLAPIError(
                f"Authentication failed (401): {error_message}. "
                "The bearer token may have expired or been revoked.",
                status_code=401,
                error_code="Unauthorized",
            )
        elif response.status_code == 403:
            raise GraphQLAPIError(
                f"Permission denied (403): {error_message}. "
                "Check that the service account's role allows Microsoft 365 recovery.",
                status_code=403,
                error_code="Forbidden",
            )
        elif response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            raise RateLimitExceeded(
                f"Rate limit exceeded (429) for {operation}. Retry after: {retry_after} seconds."
            )
        elif messages:
            raise GraphQLResponseError(
                messages, operation_name=operation, status_code=response.status_code
            )
        else:
            raise GraphQLAPIError(
                f"GraphQL API error ({response.status_code}) for {operation}: {error_message}",
                status_code=response.status_code,
            )

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return 500 <= response.status_code < 600 or response.status_code == 429

    def _get_retry_delay(self, response: requests.Response | None, attempt: int) -> float:
        """Get the delay before retrying, with ±20% jitter.

        Honours Retry-After on 429 responses.
        """
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                    return base_delay + base_delay * 0.2 * (2 * random.random() - 1)
                except ValueError:
                    pass  # Fall through to default

        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        jitter = base_delay * 0.2 * (2 * random.random() - 1)
        return base_delay + jitter

    def execute(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> dict[str, Any]:
        """Execute a GraphQL query or mutation and return its ``data`` mapping.

        On a 401 the token provider's cached token is invalidated (when it
        supports that) and the request is sent once more with a fresh token.

        Args:
            query: GraphQL document
            variables: Variables for the document
            operation_name: Named operation within the document

        Returns:
            The ``data`` portion of the response

        Raises:
            GraphQLResponseError: The response carried an ``errors`` envelope
            EmptyResponseError: The response had no body or no ``data``
            GraphQLAPIError: For other HTTP or transport failures
            RateLimitExceeded: When rate limits cannot be recovered
            AuthenticationError: When a token cannot be acquired
        """
        operation = operation_name or "anonymous"
        payload: dict[str, Any] = {"query": query, "variables": variables or {}}
        if operation_name:
            payload["operationName"] = operation_name

        try:
            return self._post_with_retries(payload, operation)
        except GraphQLAPIError as e:
            invalidate = getattr(self.auth, "invalidate", None)
            if e.status_code != 401 or not callable(invalidate):
                raise
            # Cached token was revoked or rotated; one fresh token, one more try
            logger.warning("GraphQL request unauthorized, re-authenticating", operation=operation)
            invalidate()
            return self._post_with_retries(payload, operation)

    def _post_with_retries(self, payload: dict[str, Any], operation: str) -> dict[str, Any]:
        """POST one GraphQL payload, retrying 429, 5xx, timeouts and connection errors."""
        last_response: requests.Response | None = None

        for attempt in range(self.max_retries + 1):
            try:
                self._rate_bucket.consume()
                headers = self._get_headers()

                logger.debug(
                    "GraphQL request",
                    operation=operation,
                    attempt=attempt + 1,
                    variables=list(payload["variables"].keys()),
                )

                response = self.session.post(
                    self.url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout,
                )
                last_response = response

                if response.status_code < 400:
                    return self._parse_body(response, operation)

                if self._should_retry(response, attempt):
                    delay = self._get_retry_delay(response, attempt)
                    logger.warning(
                        "Retrying GraphQL request",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue

                self._handle_error_response(response, operation)

            except requests.exceptions.Timeout:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "GraphQL request timed out, retrying",
                        operation=operation,
                        attempt=attempt + 1,
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise GraphQLAPIError(
                    f"{operation} timed out after {self.timeout}s and {self.max_retries} retries.",
                    status_code=None,
                ) from None

            except requests.exceptions.ConnectionError as e:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "GraphQL connection error, retrying",
                        operation=operation,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise GraphQLAPIError(
                    f"Connection to {self.url} failed: {e}. "
                    "Check rsc.base_url and your network connection.",
                    status_code=None,
                ) from e

        # All retries exhausted
        if last_response is not None:
            self._handle_error_response(last_response, operation)

        raise GraphQLAPIError(
            f"{operation} failed after {self.max_retries} retries",
            status_code=None,
        )

    def _parse_body(self, response: requests.Response, operation: str) -> dict[str, Any]:
        """Unwrap a 2xx GraphQL body into its data mapping."""
        if not response.content:
            raise EmptyResponseError(
                f"{operation} returned an empty response", operation_name=operation
            )
        try:
            body = response.json()
        except ValueError as e:
            raise EmptyResponseError(
                f"{operation} returned a non-JSON response", operation_name=operation
            ) from e

        if not isinstance(body, dict):
            raise EmptyResponseError(
                f"{operation} returned an unexpected response shape", operation_name=operation
            )

        errors = body.get("errors")
        if errors:
            messages = [_error_message(err) for err in errors]
            logger.warning(
                "GraphQL error envelope",
                operation=operation,
                error_count=len(messages),
                first_error=messages[0][:200],
            )
            raise GraphQLResponseError(messages, operation_name=operation)

        data = body.get("data")
        if data is None:
            raise EmptyResponseError(
                f"{operation} returned no data", operation_name=operation
            )
        return data

    def paginate_nodes(
        self,
        query: str,
        connection_path: str,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every node of a cursor-paginated connection.

        The query must accept ``$first`` and ``$after`` and select
        ``nodes`` and ``pageInfo { hasNextPage endCursor }`` on the
        connection found at ``connection_path`` (dot separated).

        Args:
            query: GraphQL document
            connection_path: Path to the connection inside ``data``
            variables: Extra variables for every page
            operation_name: Named operation within the document
            page_size: Nodes requested per page
            max_pages: Maximum number of pages to fetch (None for unlimited)

        Returns:
            All nodes across all pages
        """
        all_nodes: list[dict[str, Any]] = []
        page_vars: dict[str, Any] = dict(variables or {})
        page_vars["first"] = page_size
        page_vars["after"] = None
        page_count = 0

        while True:
            if max_pages and page_count >= max_pages:
                logger.debug(
                    "Pagination stopped at max_pages",
                    max_pages=max_pages,
                    items_collected=len(all_nodes),
                )
                break

            data = self.execute(query, dict(page_vars), operation_name=operation_name)
            connection: Any = data
            for key in connection_path.split("."):
                connection = (connection or {}).get(key)
            connection = connection or {}

            nodes = connection.get("nodes") or []
            all_nodes.extend(nodes)
            page_count += 1

            page_info = connection.get("pageInfo") or {}
            if page_info.get("hasNextPage") and page_info.get("endCursor"):
                page_vars["after"] = page_info["endCursor"]
            else:
                break

        logger.debug(
            "Pagination complete",
            operation=operation_name,
            total_pages=page_count,
            total_items=len(all_nodes),
        )
        return all_nodes


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown GraphQL error")
    return str(error)


def _extract_error_messages(response: requests.Response) -> list[str]:
    try:
        body = response.json()
    except ValueError:
        return []
    if isinstance(body, dict) and body.get("errors"):
        return [_error_message(err) for err in body["errors"]]
    return []
