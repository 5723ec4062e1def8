# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_introspection

from collections.abc import AsyncIterator, Iterator

import httpx
import pytest

from coreason_introspection.endpoint import IntrospectionEndpoint
from coreason_introspection.exceptions import (
    IntrospectionConnectionError,
    IntrospectionIOError,
    OversizedResponseError,
)
from coreason_introspection.transport import RawResponse, fetch, fetch_async

ENDPOINT = IntrospectionEndpoint.plan_b("https://planb.example.com/oauth2/tokeninfo")


def test_fetch_returns_status_and_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b'{"uid": "test2"}')

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        response = fetch(client, ENDPOINT.build_request("abc"))

    assert response == RawResponse(200, b'{"uid": "test2"}')
    assert seen[0].method == "GET"
    assert seen[0].url.params["access_token"] == "abc"
    assert seen[0].headers["Accept"] == "application/json"


def test_fetch_posts_form_with_basic_auth() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"active": False})

    endpoint = IntrospectionEndpoint.rfc7662("https://as.example.com/introspect", "rs", "s3cr3t")
    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        fetch(client, endpoint.build_request("abc"))

    request = seen[0]
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert request.content == b"token=abc&token_type_hint=access_token"
    assert request.headers["Authorization"].startswith("Basic ")


def test_fetch_keeps_error_statuses() -> None:
    """Status handling happens one layer up, the transport only reports."""
    handler = lambda request: httpx.Response(503, text="down")  # noqa: E731

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        response = fetch(client, ENDPOINT.build_request("abc"))

    assert response == RawResponse(503, b"down")


def test_fetch_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(IntrospectionConnectionError, match="Connection refused") as exc_info:
            fetch(client, ENDPOINT.build_request("abc"))

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_fetch_timeout_is_a_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(IntrospectionConnectionError):
            fetch(client, ENDPOINT.build_request("abc"))


def test_fetch_body_read_error() -> None:
    def broken_body() -> Iterator[bytes]:
        yield b'{"uid": '
        raise httpx.ReadError("Connection reset by peer")

    handler = lambda request: httpx.Response(200, content=broken_body())  # noqa: E731

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(IntrospectionIOError, match="Could not read response body"):
            fetch(client, ENDPOINT.build_request("abc"))


def test_fetch_rejects_large_content_length() -> None:
    handler = lambda request: httpx.Response(200, content=b"x" * 2048)  # noqa: E731

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(OversizedResponseError, match="2048 bytes, limit 1024"):
            fetch(client, ENDPOINT.build_request("abc"), max_bytes=1024)


def test_fetch_rejects_large_streamed_body() -> None:
    """Without a Content-Length the limit is enforced while reading."""

    def chunks() -> Iterator[bytes]:
        for _ in range(10):
            yield b"x" * 200

    handler = lambda request: httpx.Response(200, content=chunks())  # noqa: E731

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(OversizedResponseError, match="limit 1024 bytes"):
            fetch(client, ENDPOINT.build_request("abc"), max_bytes=1024)


def test_fetch_ignores_malformed_content_length() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        response = httpx.Response(200, content=b"{}")
        response.headers["Content-Length"] = "not-a-number"
        return response

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        assert fetch(client, ENDPOINT.build_request("abc")).body == b"{}"


@pytest.mark.asyncio
async def test_fetch_async_returns_status_and_body() -> None:
    handler = lambda request: httpx.Response(401, text="Unauthorized")  # noqa: E731

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await fetch_async(client, ENDPOINT.build_request("abc"))

    assert response == RawResponse(401, b"Unauthorized")


@pytest.mark.asyncio
async def test_fetch_async_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(IntrospectionConnectionError):
            await fetch_async(client, ENDPOINT.build_request("abc"))


@pytest.mark.asyncio
async def test_fetch_async_rejects_large_streamed_body() -> None:
    async def chunks() -> AsyncIterator[bytes]:
        for _ in range(10):
            yield b"x" * 200

    handler = lambda request: httpx.Response(200, content=chunks())  # noqa: E731

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(OversizedResponseError):
            await fetch_async(client, ENDPOINT.build_request("abc"), max_bytes=1024)
