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
Endpoint configuration: where and how an access token is sent for introspection.
"""

from typing import Literal, NamedTuple
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from coreason_introspection.exceptions import InitializationError

GOOGLE_V3_TOKENINFO_URL = "https://www.googleapis.com/oauth2/v3/tokeninfo"
AMAZON_TOKENINFO_URL = "https://api.amazon.com/auth/O2/tokeninfo"
ACCESS_TOKEN_QUERY_PARAMETER = "access_token"


class IntrospectionRequest(NamedTuple):
    """A fully assembled request for one token against one endpoint."""

    method: str
    url: str
    endpoint: str
    data: dict[str, str] | None = None
    auth: httpx.BasicAuth | None = None


def assemble_url_prefix(endpoint: str, query_parameter: str | None) -> str:
    """
    Builds the URL prefix the token is appended to.

    With a query parameter the prefix ends in `?<param>=` (or `&<param>=` if the endpoint
    already has a query string), otherwise the token becomes the last path segment.

    Args:
        endpoint: The introspection endpoint.
        query_parameter: The query parameter carrying the token, if any.

    Returns:
        str: The URL prefix.

    Raises:
        InitializationError: If the resulting URL is not a valid absolute http(s) URL.
    """
    if query_parameter:
        prefix = endpoint[:-1] if endpoint.endswith("/") else endpoint
        separator = "&" if "?" in prefix else "?"
        prefix = f"{prefix}{separator}{query_parameter}="
    else:
        prefix = endpoint if endpoint.endswith("/") else f"{endpoint}/"

    _validate_url(f"{prefix}test_token")
    return prefix


def _validate_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InitializationError(f"Invalid URL: {e}") from e

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InitializationError(f"Invalid URL: '{url}' must be an absolute http(s) URL")


class IntrospectionEndpoint(BaseModel):
    """
    Immutable description of an introspection endpoint.

    Attributes:
        endpoint (str): The introspection endpoint.
        query_parameter (str | None): Query parameter carrying the token for GET requests.
            If None the token is appended to the endpoint path.
        fallback_endpoint (str | None): An endpoint asked when the primary one fails.
        method (str): "GET" (token in the URL) or "POST" (RFC 7662 form body).
        client_id (str | None): Client id for HTTP Basic authentication on POST.
        client_secret (SecretStr | None): Client secret for HTTP Basic authentication on POST.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: str = Field(..., description="The introspection endpoint URL.")
    query_parameter: str | None = None
    fallback_endpoint: str | None = None
    method: Literal["GET", "POST"] = "GET"
    client_id: str | None = None
    client_secret: SecretStr | None = None

    @model_validator(mode="after")
    def validate_endpoints(self) -> "IntrospectionEndpoint":
        # InitializationError is not a ValueError, so pydantic lets it propagate unchanged.
        if self.method == "POST":
            if self.query_parameter:
                raise InitializationError("A query parameter cannot be used with POST introspection requests")
            for url in self._endpoints():
                _validate_url(url)
        else:
            for url in self._endpoints():
                assemble_url_prefix(url, self.query_parameter)
        return self

    def _endpoints(self) -> list[str]:
        return [url for url in (self.endpoint, self.fallback_endpoint) if url]

    @classmethod
    def google_v3(cls) -> "IntrospectionEndpoint":
        """
        Google's token info endpoint.

        [More information](https://developers.google.com/identity/protocols/OAuth2UserAgent#validatetoken)
        """
        return cls(endpoint=GOOGLE_V3_TOKENINFO_URL, query_parameter=ACCESS_TOKEN_QUERY_PARAMETER)

    @classmethod
    def amazon(cls) -> "IntrospectionEndpoint":
        """Login with Amazon's token info endpoint."""
        return cls(endpoint=AMAZON_TOKENINFO_URL, query_parameter=ACCESS_TOKEN_QUERY_PARAMETER)

    @classmethod
    def plan_b(cls, endpoint: str, fallback_endpoint: str | None = None) -> "IntrospectionEndpoint":
        """
        A Plan B token info endpoint.

        [More information](http://planb.readthedocs.io/en/latest/intro.html#token-info)
        """
        return cls(
            endpoint=endpoint,
            query_parameter=ACCESS_TOKEN_QUERY_PARAMETER,
            fallback_endpoint=fallback_endpoint,
        )

    @classmethod
    def rfc7662(
        cls,
        endpoint: str,
        client_id: str | None = None,
        client_secret: str | SecretStr | None = None,
    ) -> "IntrospectionEndpoint":
        """An RFC 7662 endpoint, optionally authenticated with client credentials."""
        if isinstance(client_secret, str):
            client_secret = SecretStr(client_secret)
        return cls(endpoint=endpoint, method="POST", client_id=client_id, client_secret=client_secret)

    @property
    def url_prefix(self) -> str:
        """The URL prefix the token is appended to on GET requests."""
        return assemble_url_prefix(self.endpoint, self.query_parameter)

    def build_request(self, token: str, fallback: bool = False) -> IntrospectionRequest:
        """
        Assembles the request introspecting `token`.

        Args:
            token: The access token.
            fallback: If True, target the fallback endpoint.

        Returns:
            IntrospectionRequest: The request to send.

        Raises:
            InitializationError: If `fallback` is requested but no fallback endpoint is configured.
        """
        endpoint = self.fallback_endpoint if fallback else self.endpoint
        if endpoint is None:
            raise InitializationError("No fallback endpoint configured")

        if self.method == "POST":
            auth = None
            if self.client_id is not None and self.client_secret is not None:
                auth = httpx.BasicAuth(self.client_id, self.client_secret.get_secret_value())
            return IntrospectionRequest(
                method="POST",
                url=endpoint,
                endpoint=endpoint,
                data={"token": token, "token_type_hint": "access_token"},
                auth=auth,
            )

        prefix = assemble_url_prefix(endpoint, self.query_parameter)
        return IntrospectionRequest(method="GET", url=f"{prefix}{quote(token, safe='')}", endpoint=endpoint)
