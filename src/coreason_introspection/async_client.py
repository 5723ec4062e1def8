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
Async token introspection client.
"""

import time
from typing import Any, Protocol

import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_introspection.config import DEFAULT_PII_SALT
from coreason_introspection.endpoint import IntrospectionEndpoint, IntrospectionRequest
from coreason_introspection.exceptions import CoreasonIntrospectionError, TokenInfoError
from coreason_introspection.introspection import fingerprint_token, normalize_token, process_response
from coreason_introspection.metrics import MetricsCollector, NullMetricsCollector
from coreason_introspection.models import TokenInfo, User
from coreason_introspection.parsers import TokenInfoParser
from coreason_introspection.retry import RetryPolicy, retry_context, should_retry
from coreason_introspection.transport import DEFAULT_MAX_RESPONSE_BYTES, fetch_async
from coreason_introspection.utils.logger import logger

tracer = trace.get_tracer(__name__)

DEFAULT_ASYNC_RETRY_BUDGET = 1.0


class AsyncTokenInfoService(Protocol):
    """Protocol for async token introspection."""

    async def introspect(self, token: str) -> TokenInfo:
        """Introspects `token` with a single request per endpoint."""
        ...

    async def introspect_with_retry(self, token: str, budget: float | None = None) -> TokenInfo:
        """Introspects `token`, retrying transient failures within `budget` seconds."""
        ...


class TokenInfoServiceClientAsync:
    """
    Async implementation of the token introspection client.

    Handles resources via async context manager. An `httpx.AsyncClient` passed in is
    borrowed and never closed here.

    Attributes:
        endpoint (IntrospectionEndpoint): Where and how tokens are sent.
        parser (TokenInfoParser): Decodes successful answers.
        metrics (MetricsCollector): Receives timing events for every call.
        retry_policy (RetryPolicy): Backoff used by `introspect_with_retry`.
        retry_budget (float): Default budget of `introspect_with_retry` in seconds.
    """

    def __init__(
        self,
        endpoint: IntrospectionEndpoint,
        parser: TokenInfoParser,
        client: httpx.AsyncClient | None = None,
        http_timeout: float = 5.0,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        retry_policy: RetryPolicy | None = None,
        retry_budget: float = DEFAULT_ASYNC_RETRY_BUDGET,
        metrics_collector: MetricsCollector | None = None,
        pii_salt: SecretStr = DEFAULT_PII_SALT,
    ) -> None:
        """
        Initialize the TokenInfoServiceClientAsync.

        Args:
            endpoint: The introspection endpoint configuration.
            parser: The parser for the service's answers.
            client: External async client (optional). If not provided, one is created and, for POST
                endpoints, instrumented for tracing.
            http_timeout: Timeout in seconds for the internally created client.
            max_response_bytes: Maximum accepted size of a response body.
            retry_policy: Backoff settings. Defaults to `RetryPolicy.background()`.
            retry_budget: Default budget of `introspect_with_retry` in seconds.
            metrics_collector: Receiver of timing events. Defaults to `NullMetricsCollector`.
            pii_salt: Salt for fingerprinting tokens in logs and traces.
        """
        self.endpoint = endpoint
        self.parser = parser
        self.max_response_bytes = max_response_bytes
        self.retry_policy = retry_policy or RetryPolicy.background()
        self.retry_budget = retry_budget
        self.metrics: MetricsCollector = metrics_collector or NullMetricsCollector()
        self.pii_salt = pii_salt
        self._internal_client = client is None

        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(timeout=http_timeout)
            # HTTP spans record the URL, so only instrument when the token is not part of it
            if endpoint.method == "POST":
                HTTPXClientInstrumentor().instrument_client(self._client)

    async def __aenter__(self) -> "TokenInfoServiceClientAsync":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Closes the HTTP client if it was created by this instance."""
        if self._internal_client:
            await self._client.aclose()

    async def introspect(self, token: str) -> TokenInfo:
        """
        Introspects `token` with one request to the primary endpoint and, if that fails, one to the fallback.

        Args:
            token: The access token.

        Returns:
            TokenInfo: What the introspection service reported.

        Raises:
            InvalidTokenInputError: If the token is empty.
            TokenInfoError: If the introspection failed.
        """
        return await self._introspect(token, budget=None)

    async def get_user(self, token: str) -> User:
        """
        Introspects `token` once and returns the user it was issued for.

        Raises:
            NotAUserError: If the token is inactive or names no user.
            TokenInfoError: If the introspection failed.
        """
        return (await self.introspect(token)).to_user()

    async def introspect_with_retry(self, token: str, budget: float | None = None) -> TokenInfo:
        """
        Introspects `token`, retrying transient failures with jittered exponential backoff.

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
        return await self._introspect(token, budget=self.retry_budget if budget is None else budget)

    async def _introspect(self, token: str, budget: float | None) -> TokenInfo:
        self.metrics.incoming_introspection_request()
        started = time.monotonic()
        self.metrics.introspection_request(started)

        with tracer.start_as_current_span("introspect_token") as span:
            try:
                token = normalize_token(token)
                fingerprint = fingerprint_token(token, self.pii_salt)
                span.set_attribute("introspection.endpoint", self.endpoint.endpoint)
                span.set_attribute("introspection.token.fingerprint", fingerprint)

                info = await self._call_with_fallback(token, budget)
            except CoreasonIntrospectionError as e:
                self.metrics.introspection_request_failure(started)
                logger.warning(f"Token introspection failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            except Exception as e:
                self.metrics.introspection_request_failure(started)
                logger.exception("Unexpected error during token introspection")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise CoreasonIntrospectionError(f"Unexpected error during token introspection: {e}") from e

            self.metrics.introspection_request_success(started)
            span.set_attribute("introspection.active", info.active)
            span.set_status(Status(StatusCode.OK))
            logger.debug(f"Introspected token {fingerprint}: active={info.active}")
            return info

    async def _call_with_fallback(self, token: str, budget: float | None) -> TokenInfo:
        try:
            return await self._call(self.endpoint.build_request(token), budget)
        except TokenInfoError as e:
            if not e.allows_fallback or self.endpoint.fallback_endpoint is None:
                raise
            logger.warning(f"Introspection endpoint {self.endpoint.endpoint} failed, using fallback: {e}")
            return await self._call(self.endpoint.build_request(token, fallback=True), budget)

    async def _call(self, request: IntrospectionRequest, budget: float | None) -> TokenInfo:
        if budget is None:
            return await self._execute(request)

        async for attempt in retry_context(self.retry_policy, budget):
            with attempt:
                try:
                    return await self._execute(request)
                except TokenInfoError as e:
                    if should_retry(e):
                        logger.warning(f"Attempt {attempt.num} against {request.endpoint} failed: {e}")
                    raise

        # Unreachable: stamina either returns from the loop or re-raises the last error
        raise TokenInfoError(f"Introspection against {request.endpoint} failed")  # pragma: no cover

    async def _execute(self, request: IntrospectionRequest) -> TokenInfo:
        started = time.monotonic()
        self.metrics.introspection_service_call(started)
        try:
            response = await fetch_async(self._client, request, self.max_response_bytes)
        except TokenInfoError:
            self.metrics.introspection_service_call_failure(started)
            raise
        self.metrics.introspection_service_call_success(started)

        return process_response(response, self.parser)
