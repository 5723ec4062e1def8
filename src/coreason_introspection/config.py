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
Configuration for the coreason-introspection package.
"""

from typing import Any, Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PII_SALT = SecretStr("coreason-unsafe-default-salt")


class IntrospectionConfig(BaseSettings):
    """
    Configuration settings for a token introspection client.

    Attributes:
        endpoint (str): The introspection endpoint (e.g. https://auth.coreason.com/oauth2/tokeninfo).
        query_parameter (str | None): Query parameter carrying the token. If None the token is
            appended to the endpoint path.
        fallback_endpoint (str | None): A second endpoint asked when the primary one fails.
        method (str): "GET" for tokeninfo style endpoints, "POST" for RFC 7662 endpoints.
        client_id (str | None): Client id used to authenticate against an RFC 7662 endpoint.
        client_secret (SecretStr | None): Client secret used to authenticate against an RFC 7662 endpoint.
        retry_budget (float | None): Seconds a retried introspection may take. None uses the client default.
        pii_salt (SecretStr): Salt for fingerprinting tokens in logs/traces.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_INTROSPECTION_",
        case_sensitive=False,
    )

    endpoint: str
    query_parameter: str | None = None
    fallback_endpoint: str | None = None
    method: Literal["GET", "POST"] = "GET"
    client_id: str | None = None
    client_secret: SecretStr | None = None
    http_timeout: float = Field(default=5.0, gt=0, description="Timeout in seconds for introspection requests.")
    max_response_bytes: int = Field(default=1_000_000, gt=0)
    retry_budget: float | None = Field(default=None, ge=0)
    pii_salt: SecretStr = DEFAULT_PII_SALT
    unsafe_local_dev: bool = False

    @field_validator("endpoint", "fallback_endpoint")
    @classmethod
    def strip_endpoint(cls, v: str | None) -> str | None:
        """
        Strips surrounding whitespace and rejects blank endpoints.
        """
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Endpoint must not be empty")
        return v

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def validate_https(self) -> "IntrospectionConfig":
        """
        Ensures that the endpoints use HTTPS, unless strictly opted out for local dev.

        Tokens travel in the URL or the body of the request, so plain HTTP would leak them.
        """
        if self.unsafe_local_dev:
            return self

        for name in ("endpoint", "fallback_endpoint"):
            value = getattr(self, name)
            if value and value.lower().startswith("http://"):
                raise ValueError(
                    f"HTTPS is required for '{name}' in production. "
                    "Set 'unsafe_local_dev=True' only for local testing."
                )
        return self

    @model_validator(mode="after")
    def validate_client_credentials(self) -> "IntrospectionConfig":
        """
        Client id and secret only make sense together.
        """
        if (self.client_id is None) != (self.client_secret is None):
            raise ValueError("'client_id' and 'client_secret' must be set together")
        return self


class ParserConfig(BaseSettings):
    """
    Field names used by a custom token info parser.

    A field left unset is not looked up in the response.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_INTROSPECTION_PARSER_",
        case_sensitive=False,
    )

    active_field: str | None = None
    user_id_field: str | None = None
    scope_field: str | None = None
    expires_in_field: str | None = None
    client_id_field: str | None = None
    strict: bool = True
    expires_is_timestamp: bool = False
