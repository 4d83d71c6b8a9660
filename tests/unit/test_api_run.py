"""Unit tests for Api.run (queries and mutations over HTTP)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from graphqlex import Api, gql
from graphqlex.errors import FieldError, InvalidResponseError, NetworkError, RequestError

HTTP_URL = "http://myhost:123/api"


def make_api(handler, **kwargs) -> Api:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Api(HTTP_URL, http_client=client, **kwargs)


def json_handler(payload, status_code: int = 200, requests: list[httpx.Request] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json=payload)

    return handler


class TestConstruction:
    def test_stores_both_urls(self):
        api = Api(HTTP_URL, "ws://myhost:123/api")

        assert api.url == HTTP_URL
        assert api.ws_url == "ws://myhost:123/api"

    def test_derives_ws_url(self):
        assert Api(HTTP_URL).ws_url == "ws://myhost:123/api"
        assert Api("https://myhost:123/api").ws_url == "wss://myhost:123/api"

    def test_rejects_unexpected_url(self):
        with pytest.raises(ValueError, match="Unexpected API URL"):
            Api("myhost:123/api")

    def test_no_connection_until_subscribe(self):
        assert Api(HTTP_URL).connection is None


class TestRunSuccess:
    @pytest.mark.asyncio
    async def test_returns_data_for_query(self):
        api = make_api(json_handler({"data": {"allPosts": {"nodes": [{"headline": "Headline 1"}]}}}))

        result = await api.run(
            gql("""
                query { allPosts ( offset: 0 ) { nodes { headline }}}
            """)
        )

        assert result == {"allPosts": {"nodes": [{"headline": "Headline 1"}]}}

    @pytest.mark.asyncio
    async def test_sends_query_and_variables(self):
        requests: list[httpx.Request] = []
        api = make_api(json_handler({"data": {}}, requests=requests))

        await api.run("query ($id: ID!) { post(id: $id) { id } }", {"id": "7"})

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == HTTP_URL
        assert json.loads(request.content) == {
            "query": "query ($id: ID!) { post(id: $id) { id } }",
            "variables": {"id": "7"},
        }

    @pytest.mark.asyncio
    async def test_missing_variables_sent_as_empty_object(self):
        requests: list[httpx.Request] = []
        api = make_api(json_handler({"data": {}}, requests=requests))

        await api.run("{ ping }")

        assert json.loads(requests[0].content)["variables"] == {}

    @pytest.mark.asyncio
    async def test_standard_headers(self):
        requests: list[httpx.Request] = []
        api = make_api(json_handler({"data": {}}, requests=requests))

        await api.run("{ ping }")

        assert requests[0].headers["content-type"] == "application/json"
        assert requests[0].headers["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_caller_headers_win(self):
        requests: list[httpx.Request] = []
        api = make_api(
            json_handler({"data": {}}, requests=requests),
            headers={"Authorization": "Bearer t", "Accept": "application/graphql-response+json"},
        )

        await api.run("{ ping }")

        headers = requests[0].headers
        assert headers["authorization"] == "Bearer t"
        assert headers["accept"] == "application/graphql-response+json"
        assert headers.get_list("accept") == ["application/graphql-response+json"]

    @pytest.mark.asyncio
    async def test_null_data_is_a_result(self):
        api = make_api(json_handler({"data": None}))

        assert await api.run("{ ping }") is None

    @pytest.mark.asyncio
    async def test_empty_errors_list_is_success(self):
        api = make_api(json_handler({"data": {"ok": True}, "errors": []}))

        assert await api.run("{ ok }") == {"ok": True}

    @pytest.mark.asyncio
    async def test_fetch_override(self):
        calls = []

        async def fetch(url, *, headers, content):
            calls.append((url, headers, content))
            return httpx.Response(200, json={"data": {"via": "fetch"}})

        api = Api(HTTP_URL, fetch=fetch)

        assert await api.run("{ via }") == {"via": "fetch"}
        url, headers, content = calls[0]
        assert url == HTTP_URL
        assert headers["Content-type"] == "application/json"
        assert json.loads(content) == {"query": "{ via }", "variables": {}}


class TestRunErrors:
    @pytest.mark.asyncio
    async def test_errors_without_handler_raise(self):
        api = make_api(json_handler({"errors": [{"message": "boom"}]}))

        with pytest.raises(RequestError, match="boom"):
            await api.run("{ ping }")

    @pytest.mark.asyncio
    async def test_errors_with_data_are_field_errors(self):
        api = make_api(json_handler({"data": {"me": None}, "errors": [{"message": "denied", "path": ["me"]}]}))

        with pytest.raises(FieldError) as exc_info:
            await api.run("{ me { id } }")

        assert exc_info.value.data == {"me": None}
        assert exc_info.value.error["path"] == ["me"]

    @pytest.mark.asyncio
    async def test_network_failure_calls_handler_and_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        on_error = MagicMock()
        api = make_api(handler, on_error=on_error)

        with pytest.raises(NetworkError) as exc_info:
            await api.run("{ ping }")

        on_error.assert_called_once()
        message, error = on_error.call_args[0]
        assert "Network request" in message
        assert "connection refused" in message
        assert error is exc_info.value
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_fetch_exception_is_network_error(self):
        async def fetch(url, *, headers, content):
            raise OSError()

        api = Api(HTTP_URL, fetch=fetch)

        with pytest.raises(NetworkError, match="Check network connection"):
            await api.run("{ ping }")

    @pytest.mark.asyncio
    async def test_unparseable_body_is_invalid_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        api = make_api(handler)

        with pytest.raises(InvalidResponseError) as exc_info:
            await api.run("{ ping }")

        assert exc_info.value.raw_body == "<html>Bad Gateway</html>"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_non_object_body_is_invalid_response(self):
        api = make_api(json_handler([1, 2, 3]))

        with pytest.raises(InvalidResponseError, match="expected a JSON object"):
            await api.run("{ ping }")

    @pytest.mark.asyncio
    async def test_request_error_goes_through_handler(self):
        on_error = MagicMock()
        api = make_api(json_handler({"errors": [{"message": "boom"}]}), on_error=on_error)

        with pytest.raises(RequestError):
            await api.run("{ ping }")

        message, error = on_error.call_args[0]
        assert message == "GraphQL Server Error: boom"
        assert isinstance(error, RequestError)


class TestCleanup:
    @pytest.mark.asyncio
    async def test_caller_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(json_handler({"data": {}})))
        api = Api(HTTP_URL, http_client=client)

        await api.aclose()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        async with Api(HTTP_URL) as api:
            client = httpx.AsyncClient()
            api._http_client = client

        assert client.is_closed is True
