# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_introspection

"""
HTTP exchange with the introspection service.

Bodies are streamed and capped so a misbehaving endpoint cannot exhaust memory.
httpx exceptions are translated into `TokenInfoError` subclasses here and never leak further.
"""

from typing import NamedTuple

import httpx

from coreason_introspection.endpoint import IntrospectionRequest
from coreason_introspection.exceptions import (
    IntrospectionConnectionError,
    IntrospectionIOError,
    OversizedResponseError,
    UrlError,
)
from coreason_introspection.utils.logger import logger

DEFAULT_MAX_RESPONSE_BYTES = 1_000_000

_HEADERS = {"Accept": "application/json"}


class RawResponse(NamedTuple):
    status_code: int
    body: bytes


def _check_content_length(response: httpx.Response, max_bytes: int) -> None:
    content_length = response.headers.get("Content-Length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            return
        if declared > max_bytes:
            raise OversizedResponseError(f"Response too large ({declared} bytes, limit {max_bytes})")


def _append_chunk(content: bytearray, chunk: bytes, max_bytes: int) -> None:
    content.extend(chunk)
    if len(content) > max_bytes:
        raise OversizedResponseError(f"Response too large (limit {max_bytes} bytes)")


def fetch(
    client: httpx.Client,
    request: IntrospectionRequest,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> RawResponse:
    """
    Sends `request` and reads the body, at most `max_bytes` of it.

    Args:
        client: The HTTP client.
        request: The assembled introspection request.
        max_bytes: Maximum accepted body size.

    Returns:
        RawResponse: Status code and body.

    Raises:
        IntrospectionConnectionError: If no response could be obtained.
        IntrospectionIOError: If the body could not be read.
        OversizedResponseError: If the body exceeds `max_bytes`.
        UrlError: If the URL is invalid.
    """
    try:
        with client.stream(
            request.method,
            request.url,
            data=request.data,
            auth=request.auth,
            headers=_HEADERS,
        ) as response:
            _check_content_length(response, max_bytes)
            content = bytearray()
            try:
                for chunk in response.iter_bytes():
                    _append_chunk(content, chunk, max_bytes)
            except httpx.HTTPError as e:
                raise IntrospectionIOError(f"Could not read response body: {e}") from e
            return RawResponse(response.status_code, bytes(content))
    except httpx.InvalidURL as e:
        raise UrlError(f"Invalid URL for endpoint {request.endpoint}") from e
    except httpx.HTTPError as e:
        logger.debug(f"Request to {request.endpoint} failed: {type(e).__name__}")
        raise IntrospectionConnectionError(f"Connection error: {e}") from e


async def fetch_async(
    client: httpx.AsyncClient,
    request: IntrospectionRequest,
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> RawResponse:
    """
    Async variant of `fetch`.
    """
    try:
        async with client.stream(
            request.method,
            request.url,
            data=request.data,
            auth=request.auth,
            headers=_HEADERS,
        ) as response:
            _check_content_length(response, max_bytes)
            content = bytearray()
            try:
                async for chunk in response.aiter_bytes():
                    _append_chunk(content, chunk, max_bytes)
            except httpx.HTTPError as e:
                raise IntrospectionIOError(f"Could not read response body: {e}") from e
            return RawResponse(response.status_code, bytes(content))
    except httpx.InvalidURL as e:
        raise UrlError(f"Invalid URL for endpoint {request.endpoint}") from e
    except httpx.HTTPError as e:
        logger.debug(f"Request to {request.endpoint} failed: {type(e).__name__}")
        raise IntrospectionConnectionError(f"Connection error: {e}") from e
