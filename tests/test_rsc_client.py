"""Tests for graphql/client.py.

Covers request shape, the GraphQL error envelope, empty responses, retry
behaviour for transient failures and cursor pagination. The requests session
is a MagicMock; nothing touches the network.
"""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from m365_recovery.core.errors import (
    AuthenticationError,
    EmptyResponseError,
    GraphQLAPIError,
    GraphQLResponseError,
    RateLimitExceeded,
)
from m365_recovery.graphql.client import RscClient

BASE_URL = "https://example.my.rubrik.com"


def _response(
    status_code: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
    raw: bytes | None = None,
) -> MagicMock:
    """Build a fake requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    if raw is not None:
        response.content = raw
        response.text = raw.decode()
        response.json.side_effect = ValueError("not json")
    elif body is None:
        response.content = b""
        response.text = ""
        response.json.side_effect = ValueError("empty")
    else:
        response.content = b"{...}"
        response.text = str(body)
        response.json.return_value = body
    return response


@pytest.fixture
def mock_auth() -> MagicMock:
    auth = MagicMock()
    auth.get_access_token.return_value = "token-abc"
    return auth


@pytest.fixture
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(mock_auth: MagicMock, session: MagicMock) -> RscClient:
    return RscClient(mock_auth, BASE_URL + "/", session=session, retry_delays=[0.01])


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("m365_recovery.graphql.client.time.sleep") as sleep:
        yield sleep


class TestExecute:
    """Tests for RscClient.execute()."""

    def test_posts_query_to_graphql_endpoint(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(body={"data": {"ok": True}})

        data = client.execute("query Q { ok }", {"a": 1}, operation_name="Q")

        assert data == {"ok": True}
        args, kwargs = session.post.call_args
        assert args[0] == "https://example.my.rubrik.com/api/graphql"
        assert kwargs["json"] == {
            "query": "query Q { ok }",
            "variables": {"a": 1},
            "operationName": "Q",
        }
        assert kwargs["headers"]["Authorization"] == "Bearer token-abc"

    def test_operation_name_omitted_when_not_given(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(body={"data": {}})

        client.execute("{ ok }")

        payload = session.post.call_args.kwargs["json"]
        assert "operationName" not in payload
        assert payload["variables"] == {}

    def test_error_envelope_raises_with_first_message(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(
            body={
                "data": None,
                "errors": [{"message": "Bulk recovery not found"}, {"message": "second"}],
            }
        )

        with pytest.raises(GraphQLResponseError) as exc_info:
            client.execute("query", operation_name="BulkRecoveryProgress")

        assert str(exc_info.value) == "Bulk recovery not found"
        assert exc_info.value.messages == ["Bulk recovery not found", "second"]
        assert exc_info.value.operation_name == "BulkRecoveryProgress"

    def test_empty_body_raises_empty_response(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(body=None)

        with pytest.raises(EmptyResponseError):
            client.execute("query")

    def test_missing_data_raises_empty_response(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(body={"extensions": {}})

        with pytest.raises(EmptyResponseError, match="no data"):
            client.execute("query")

    def test_non_json_body_raises_empty_response(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(raw=b"<html>gateway</html>")

        with pytest.raises(EmptyResponseError, match="non-JSON"):
            client.execute("query")

    def test_401_reauthenticates_once(
        self, client: RscClient, mock_auth: MagicMock, session: MagicMock
    ) -> None:
        session.post.side_effect = [
            _response(401, raw=b"unauthorized"),
            _response(body={"data": {"ok": True}}),
        ]

        assert client.execute("query") == {"ok": True}
        mock_auth.invalidate.assert_called_once()
        assert session.post.call_count == 2

    def test_401_after_fresh_token_raises(
        self, client: RscClient, mock_auth: MagicMock, session: MagicMock
    ) -> None:
        session.post.return_value = _response(401, raw=b"unauthorized")

        with pytest.raises(GraphQLAPIError) as exc_info:
            client.execute("query")

        assert exc_info.value.status_code == 401
        mock_auth.invalidate.assert_called_once()
        assert session.post.call_count == 2

    def test_401_with_static_token_is_not_retried(self, session: MagicMock) -> None:
        auth = MagicMock(spec=["get_access_token"])
        auth.get_access_token.return_value = "static-token"
        client = RscClient(auth, BASE_URL, session=session, retry_delays=[0.01])
        session.post.return_value = _response(401, raw=b"unauthorized")

        with pytest.raises(GraphQLAPIError):
            client.execute("query")

        assert session.post.call_count == 1

    def test_403_does_not_reauthenticate(
        self, client: RscClient, mock_auth: MagicMock, session: MagicMock
    ) -> None:
        session.post.return_value = _response(403, raw=b"forbidden")

        with pytest.raises(GraphQLAPIError, match="Permission denied"):
            client.execute("query")

        mock_auth.invalidate.assert_not_called()
        assert session.post.call_count == 1

    def test_400_with_errors_envelope(self, client: RscClient, session: MagicMock) -> None:
        session.post.return_value = _response(
            400, body={"errors": [{"message": "Variable $input is invalid"}]}
        )

        with pytest.raises(GraphQLResponseError, match="Variable \\$input is invalid") as exc_info:
            client.execute("query")

        assert exc_info.value.status_code == 400

    def test_retries_5xx_then_succeeds(
        self, client: RscClient, session: MagicMock, no_sleep: MagicMock
    ) -> None:
        session.post.side_effect = [
            _response(503, raw=b"unavailable"),
            _response(body={"data": {"ok": 1}}),
        ]

        assert client.execute("query") == {"ok": 1}
        assert session.post.call_count == 2
        assert no_sleep.called

    def test_gives_up_after_max_retries(self, client: RscClient, session: MagicMock) -> None:
        session.post.return_value = _response(502, raw=b"bad gateway")

        with pytest.raises(GraphQLAPIError) as exc_info:
            client.execute("query")

        assert exc_info.value.status_code == 502
        assert session.post.call_count == client.max_retries + 1

    def test_persistent_429_raises_rate_limit(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(429, raw=b"slow down", headers={"Retry-After": "1"})

        with pytest.raises(RateLimitExceeded):
            client.execute("query")

    def test_timeout_retried_then_raises(self, client: RscClient, session: MagicMock) -> None:
        session.post.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(GraphQLAPIError, match="timed out"):
            client.execute("query", operation_name="O365Orgs")

        assert session.post.call_count == client.max_retries + 1

    def test_connection_error_recovers(self, client: RscClient, session: MagicMock) -> None:
        session.post.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            _response(body={"data": {"ok": 1}}),
        ]

        assert client.execute("query") == {"ok": 1}

    def test_token_failure_becomes_authentication_error(
        self, client: RscClient, mock_auth: MagicMock, session: MagicMock
    ) -> None:
        mock_auth.get_access_token.side_effect = RuntimeError("keyring locked")

        with pytest.raises(AuthenticationError, match="keyring locked"):
            client.execute("query")

        session.post.assert_not_called()


class TestRetryDelay:
    """Tests for RscClient._get_retry_delay()."""

    def test_honours_retry_after(self, client: RscClient) -> None:
        response = _response(429, headers={"Retry-After": "10"})

        delay = client._get_retry_delay(response, 0)

        assert 8.0 <= delay <= 12.0

    def test_uses_last_delay_beyond_schedule(self, mock_auth: MagicMock) -> None:
        client = RscClient(mock_auth, BASE_URL, retry_delays=[1.0, 2.0], session=MagicMock())

        delay = client._get_retry_delay(None, 5)

        assert 1.6 <= delay <= 2.4


class TestPaginateNodes:
    """Tests for RscClient.paginate_nodes()."""

    def test_follows_cursor_until_last_page(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.side_effect = [
            _response(
                body={
                    "data": {
                        "o365Orgs": {
                            "nodes": [{"id": "a"}, {"id": "b"}],
                            "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
                        }
                    }
                }
            ),
            _response(
                body={
                    "data": {
                        "o365Orgs": {
                            "nodes": [{"id": "c"}],
                            "pageInfo": {"hasNextPage": False, "endCursor": "c2"},
                        }
                    }
                }
            ),
        ]

        nodes = client.paginate_nodes("query", "o365Orgs", operation_name="O365Orgs", page_size=2)

        assert [n["id"] for n in nodes] == ["a", "b", "c"]
        first_vars = session.post.call_args_list[0].kwargs["json"]["variables"]
        second_vars = session.post.call_args_list[1].kwargs["json"]["variables"]
        assert first_vars == {"first": 2, "after": None}
        assert second_vars == {"first": 2, "after": "c1"}

    def test_nested_connection_path(self, client: RscClient, session: MagicMock) -> None:
        session.post.return_value = _response(
            body={"data": {"outer": {"inner": {"nodes": [{"id": "x"}], "pageInfo": {}}}}}
        )

        assert client.paginate_nodes("query", "outer.inner") == [{"id": "x"}]

    def test_max_pages_stops_early(self, client: RscClient, session: MagicMock) -> None:
        session.post.return_value = _response(
            body={
                "data": {
                    "conn": {
                        "nodes": [{"id": "n"}],
                        "pageInfo": {"hasNextPage": True, "endCursor": "more"},
                    }
                }
            }
        )

        nodes = client.paginate_nodes("query", "conn", max_pages=2)

        assert len(nodes) == 2
        assert session.post.call_count == 2

    def test_missing_connection_yields_nothing(
        self, client: RscClient, session: MagicMock
    ) -> None:
        session.post.return_value = _response(body={"data": {"o365Orgs": None}})

        assert client.paginate_nodes("query", "o365Orgs") == []
