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
Blocking token introspection client and the builder for all client flavours.
"""

from typing import Any, Protocol

import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr, ValidationError

from coreason_introspection.async_client import DEFAULT_ASYNC_RETRY_BUDGET, TokenInfoServiceClientAsync
from coreason_introspection.background import BackgroundTokenInfoServiceClient
from coreason_introspection.config import DEFAULT_PII_SALT, IntrospectionConfig
from coreason_introspection.endpoint import (
    ACCESS_TOKEN_QUERY_PARAMETER,
    AMAZON_TOKENINFO_URL,
    GOOGLE_V3_TOKENINFO_URL,
    IntrospectionEndpoint,
    IntrospectionRequest,
)
from coreason_introspection.exceptions import CoreasonIntrospectionError, InitializationError, TokenInfoError
from coreason_introspection.introspection import fingerprint_token, normalize_token, process_response
from coreason_introspection.metrics import MetricsCollector
from coreason_introspection.models import TokenInfo, User
from coreason_introspection.parsers import (
    AmazonTokenInfoParser,
    CustomTokenInfoParser,
    GoogleV3TokenInfoParser,
    PlanBTokenInfoParser,
    RFC7662TokenInfoParser,
    TokenInfoParser,
)
from coreason_introspection.retry import RetryPolicy, retry_context, should_retry
from coreason_introspection.transport import DEFAULT_MAX_RESPONSE_BYTES, fetch
from coreason_introspection.utils.logger import logger

tracer = trace.get_tracer(__name__)

DEFAULT_BLOCKING_RETRY_BUDGET = 0.2
DEFAULT_HTTP_TIMEOUT = 5.0


class TokenInfoService(Protocol):
    """Protocol for blocking token introspection."""

    def introspect(self, token: str) -> TokenInfo:
        """Introspects `token` and returns what the authority reports about it."""
        ...


class TokenInfoServiceClient:
    """
    Blocking implementation of the token introspection client.

    Usable as a context manager. An `httpx.Client` passed in is borrowed and never closed here.

    Attributes:
        endpoint (IntrospectionEndpoint): Where and how tokens are sent.
        parser (TokenInfoParser): Decodes successful answers.
        retry_policy (RetryPolicy): Backoff used by `introspect_with_retry`.
        retry_budget (float): Default budget of `introspect_with_retry` in seconds.
    """

    def __init__(
        self,
        endpoint: IntrospectionEndpoint,
        parser: TokenInfoParser,
        client: httpx.Client | None = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        retry_policy: RetryPolicy | None = None,
        retry_budget: float = DEFAULT_BLOCKING_RETRY_BUDGET,
        pii_salt: SecretStr = DEFAULT_PII_SALT,
    ) -> None:
        """
        Initialize the TokenInfoServiceClient.

        Args:
            endpoint: The introspection endpoint configuration.
            parser: The parser for the service's answers.
            client: External HTTP client (optional). If not provided, one is created and, for POST
                endpoints, instrumented for tracing.
            http_timeout: Timeout in seconds for the internally created client.
            max_response_bytes: Maximum accepted size of a response body.
            retry_policy: Backoff settings. Defaults to `RetryPolicy.blocking()`.
            retry_budget: Default budget of `introspect_with_retry` in seconds.
            pii_salt: Salt for fingerprinting tokens in logs and traces.
        """
        self.endpoint = endpoint
        self.parser = parser
        self.max_response_bytes = max_response_bytes
        self.retry_policy = retry_policy or RetryPolicy.blocking()
        self.retry_budget = retry_budget
        self.pii_salt = pii_salt
        self._internal_client = client is None

        if client is not None:
            self._client = client
        else:
            self._client = httpx.Client(timeout=http_timeout)
            # HTTP spans record the URL, so only instrument when the token is not part of it
            if endpoint.method == "POST":
                HTTPXClientInstrumentor().instrument_client(self._client)

    def __enter__(self) -> "TokenInfoServiceClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Closes the HTTP client if it was created by this instance."""
        if self._internal_client:
            self._client.close()

    def introspect(self, token: str) -> TokenInfo:
        """
        Introspects `token` with one request to the primary endpoint and, if that fails, one to the fallback.

        The fallback is not asked when the primary endpoint rejected our request as malformed (`ClientError`).

        Emits an OpenTelemetry span `introspect_token`.

        Args:
            token: The access token.

        Returns:
            TokenInfo: What the introspection service reported.

        Raises:
            InvalidTokenInputError: If the token is empty.
            TokenInfoError: If the introspection failed.
        """
        return self._introspect(token, budget=None)

    def get_user(self, token: str) -> User:
        """
        Introspects `token` once and returns the user it was issued for.

        Raises:
            NotAUserError: If the token is inactive or names no user.
            TokenInfoError: If the introspection failed.
        """
        return self.introspect(token).to_user()

    def introspect_with_retry(self, token: str, budget: float | None = None) -> TokenInfo:
        """
        Introspects `token`, retrying transient failures with exponential backoff.

        Each endpoint gets its own budget, so with a fallback the call may take up to twice as long.

        Args:
            token: The access token.
            budget: Seconds the retries may take per endpoint. Defaults to `retry_budget`.

        Returns:
            TokenInfo: What the introspection service reported.

        Raises:
            InvalidTokenInputError: If the token is empty.
            BudgetExceededError: If the budget is zero or negative.
            TokenInfoError: If the introspection failed.
        """
        return self._introspect(token, budget=self.retry_budget if budget is None else budget)

    def _introspect(self, token: str, budget: float | None) -> TokenInfo:
        with tracer.start_as_current_span("introspect_token") as span:
            try:
                token = normalize_token(token)
                fingerprint = fingerprint_token(token, self.pii_salt)
                span.set_attribute("introspection.endpoint", self.endpoint.endpoint)
                span.set_attribute("introspection.token.fingerprint", fingerprint)

                info = self._call_with_fallback(token, budget)
            except CoreasonIntrospectionError as e:
                logger.warning(f"Token introspection failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            except Exception as e:
                logger.exception("Unexpected error during token introspection")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise CoreasonIntrospectionError(f"Unexpected error during token introspection: {e}") from e

            span.set_attribute("introspection.active", info.active)
            span.set_status(Status(StatusCode.OK))
            logger.debug(f"Introspected token {fingerprint}: active={info.active}")
            return info

    def _call_with_fallback(self, token: str, budget: float | None) -> TokenInfo:
        try:
            return self._call(self.endpoint.build_request(token), budget)
        except TokenInfoError as e:
            if not e.allows_fallback or self.endpoint.fallback_endpoint is None:
                raise
            logger.warning(f"Introspection endpoint {self.endpoint.endpoint} failed, using fallback: {e}")
            return self._call(self.endpoint.build_request(token, fallback=True), budget)

    def _call(self, request: IntrospectionRequest, budget: float | None) -> TokenInfo:
        if budget is None:
            return self._execute(request)

        for attempt in retry_context(self.retry_policy, budget):
            with attempt:
                try:
                    return self._execute(request)
                except TokenInfoError as e:
                    if should_retry(e):
                        logger.warning(f"Attempt {attempt.num} against {request.endpoint} failed: {e}")
                    raise

        # Unreachable: stamina either returns from the loop or re-raises the last error
        raise TokenInfoError(f"Introspection against {request.endpoint} failed")  # pragma: no cover

    def _execute(self, request: IntrospectionRequest) -> TokenInfo:
        response = fetch(self._client, request, self.max_response_bytes)
        return process_response(response, self.parser)


class TokenInfoServiceClientBuilder:
    """
    Collects endpoint, parser and transport settings and builds any of the three clients.

    Example:
        >>> client = TokenInfoServiceClientBuilder.google_v3().build()
        >>> info = client.introspect(token)
    """

    def __init__(self, parser: TokenInfoParser | None = None) -> None:
        self.parser = parser
        self.endpoint: str | None = None
        self.fallback_endpoint: str | None = None
        self.query_parameter: str | None = None
        self.method: str = "GET"
        self.client_id: str | None = None
        self.client_secret: SecretStr | None = None
        self.http_timeout: float = DEFAULT_HTTP_TIMEOUT
        self.max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES
        self.retry_budget: float | None = None
        self.pii_salt: SecretStr = DEFAULT_PII_SALT

    def with_parser(self, parser: TokenInfoParser) -> "TokenInfoServiceClientBuilder":
        self.parser = parser
        return self

    def with_endpoint(self, endpoint: str) -> "TokenInfoServiceClientBuilder":
        self.endpoint = endpoint
        return self

    def with_fallback_endpoint(self, endpoint: str) -> "TokenInfoServiceClientBuilder":
        self.fallback_endpoint = endpoint
        return self

    def with_query_parameter(self, parameter: str) -> "TokenInfoServiceClientBuilder":
        self.query_parameter = parameter
        return self

    def with_method(self, method: str) -> "TokenInfoServiceClientBuilder":
        self.method = method.strip().upper()
        return self

    def with_client_credentials(
        self, client_id: str, client_secret: str | SecretStr
    ) -> "TokenInfoServiceClientBuilder":
        self.client_id = client_id
        self.client_secret = SecretStr(client_secret) if isinstance(client_secret, str) else client_secret
        return self

    def with_http_timeout(self, timeout: float) -> "TokenInfoServiceClientBuilder":
        self.http_timeout = timeout
        return self

    def with_max_response_bytes(self, max_bytes: int) -> "TokenInfoServiceClientBuilder":
        self.max_response_bytes = max_bytes
        return self

    def with_retry_budget(self, budget: float) -> "TokenInfoServiceClientBuilder":
        self.retry_budget = budget
        return self

    def with_pii_salt(self, salt: str | SecretStr) -> "TokenInfoServiceClientBuilder":
        self.pii_salt = SecretStr(salt) if isinstance(salt, str) else salt
        return self

    def build(self, client: httpx.Client | None = None) -> TokenInfoServiceClient:
        """
        Builds a blocking client.

        Raises:
            InitializationError: If the parser or the endpoint is missing or invalid.
        """
        endpoint, parser = self._resolve()
        return TokenInfoServiceClient(
            endpoint=endpoint,
            parser=parser,
            client=client,
            http_timeout=self.http_timeout,
            max_response_bytes=self.max_response_bytes,
            retry_budget=DEFAULT_BLOCKING_RETRY_BUDGET if self.retry_budget is None else self.retry_budget,
            pii_salt=self.pii_salt,
        )

    def build_async(
        self,
        metrics_collector: MetricsCollector | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> TokenInfoServiceClientAsync:
        """
        Builds an async client reporting to `metrics_collector`.

        Raises:
            InitializationError: If the parser or the endpoint is missing or invalid.
        """
        endpoint, parser = self._resolve()
        return TokenInfoServiceClientAsync(
            endpoint=endpoint,
            parser=parser,
            client=client,
            http_timeout=self.http_timeout,
            max_response_bytes=self.max_response_bytes,
            retry_budget=DEFAULT_ASYNC_RETRY_BUDGET if self.retry_budget is None else self.retry_budget,
            metrics_collector=metrics_collector,
            pii_salt=self.pii_salt,
        )

    def build_background(self, metrics_collector: MetricsCollector | None = None) -> BackgroundTokenInfoServiceClient:
        """
        Builds a client running its own event loop on a background thread.

        Raises:
            InitializationError: If the parser or the endpoint is missing or invalid.
        """
        endpoint, parser = self._resolve()
        return BackgroundTokenInfoServiceClient(
            endpoint=endpoint,
            parser=parser,
            http_timeout=self.http_timeout,
            max_response_bytes=self.max_response_bytes,
            retry_budget=DEFAULT_ASYNC_RETRY_BUDGET if self.retry_budget is None else self.retry_budget,
            metrics_collector=metrics_collector,
            pii_salt=self.pii_salt,
        )

    def _resolve(self) -> tuple[IntrospectionEndpoint, TokenInfoParser]:
        if self.parser is None:
            raise InitializationError("No token info parser.")
        if self.endpoint is None:
            raise InitializationError("No endpoint.")

        try:
            endpoint = IntrospectionEndpoint(
                endpoint=self.endpoint,
                query_parameter=self.query_parameter,
                fallback_endpoint=self.fallback_endpoint,
                method=self.method,  # type: ignore[arg-type]
                client_id=self.client_id,
                client_secret=self.client_secret,
            )
        except ValidationError as e:
            raise InitializationError(f"Invalid endpoint configuration: {e}") from e
        return endpoint, self.parser

    @classmethod
    def plan_b(cls, endpoint: str) -> "TokenInfoServiceClientBuilder":
        """A builder for a Plan B token info endpoint."""
        return (
            cls(PlanBTokenInfoParser())
            .with_endpoint(endpoint)
            .with_query_parameter(ACCESS_TOKEN_QUERY_PARAMETER)
        )

    @classmethod
    def plan_b_from_env(cls) -> "TokenInfoServiceClientBuilder":
        """
        A Plan B builder configured from `COREASON_INTROSPECTION_*` environment variables.

        The query parameter defaults to `access_token`.

        Raises:
            InitializationError: If the environment holds no or invalid settings.
        """
        builder = cls.from_config(_config_from_env(), parser=PlanBTokenInfoParser())
        if builder.query_parameter is None:
            builder.with_query_parameter(ACCESS_TOKEN_QUERY_PARAMETER)
        return builder

    @classmethod
    def google_v3(cls) -> "TokenInfoServiceClientBuilder":
        """A builder for Google's v3 tokeninfo endpoint."""
        return (
            cls(GoogleV3TokenInfoParser())
            .with_endpoint(GOOGLE_V3_TOKENINFO_URL)
            .with_query_parameter(ACCESS_TOKEN_QUERY_PARAMETER)
        )

    @classmethod
    def amazon(cls) -> "TokenInfoServiceClientBuilder":
        """A builder for the Login with Amazon tokeninfo endpoint."""
        return (
            cls(AmazonTokenInfoParser())
            .with_endpoint(AMAZON_TOKENINFO_URL)
            .with_query_parameter(ACCESS_TOKEN_QUERY_PARAMETER)
        )

    @classmethod
    def rfc7662(
        cls,
        endpoint: str,
        client_id: str | None = None,
        client_secret: str | SecretStr | None = None,
    ) -> "TokenInfoServiceClientBuilder":
        """A builder for an RFC 7662 endpoint, optionally with client credentials."""
        builder = cls(RFC7662TokenInfoParser()).with_endpoint(endpoint).with_method("POST")
        if client_id is not None and client_secret is not None:
            builder.with_client_credentials(client_id, client_secret)
        return builder

    @classmethod
    def from_env(cls) -> "TokenInfoServiceClientBuilder":
        """
        A builder configured entirely from the environment.

        The endpoint comes from `COREASON_INTROSPECTION_*`, the parser from
        `COREASON_INTROSPECTION_PARSER_*` variables.

        Raises:
            InitializationError: If the environment holds no or invalid settings.
        """
        return cls.from_config(_config_from_env(), parser=CustomTokenInfoParser.from_env())

    @classmethod
    def from_config(
        cls, config: IntrospectionConfig, parser: TokenInfoParser | None = None
    ) -> "TokenInfoServiceClientBuilder":
        """A builder taking endpoint and transport settings from `config`."""
        builder = cls(parser)
        builder.endpoint = config.endpoint
        builder.fallback_endpoint = config.fallback_endpoint
        builder.query_parameter = config.query_parameter
        builder.method = config.method
        builder.client_id = config.client_id
        builder.client_secret = config.client_secret
        builder.http_timeout = config.http_timeout
        builder.max_response_bytes = config.max_response_bytes
        builder.retry_budget = config.retry_budget
        builder.pii_salt = config.pii_salt
        return builder


def _config_from_env() -> IntrospectionConfig:
    try:
        return IntrospectionConfig()  # type: ignore[call-arg]
    except ValidationError as e:
        raise InitializationError(f"Invalid introspection configuration: {e}") from e
