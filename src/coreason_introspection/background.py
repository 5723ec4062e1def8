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
Introspection client for blocking code that wants async throughput.

The async client lives in an event loop on a background thread (an anyio blocking portal).
Callers submit tokens from any thread and receive `concurrent.futures.Future` objects.
"""

import threading
from concurrent.futures import Future, wait
from contextlib import ExitStack
from typing import Any

import httpx
from anyio.from_thread import start_blocking_portal
from pydantic import SecretStr

from coreason_introspection.async_client import DEFAULT_ASYNC_RETRY_BUDGET, TokenInfoServiceClientAsync
from coreason_introspection.config import DEFAULT_PII_SALT
from coreason_introspection.endpoint import IntrospectionEndpoint
from coreason_introspection.exceptions import TokenInfoError
from coreason_introspection.metrics import MetricsCollector
from coreason_introspection.models import TokenInfo, User
from coreason_introspection.parsers import TokenInfoParser
from coreason_introspection.retry import RetryPolicy
from coreason_introspection.transport import DEFAULT_MAX_RESPONSE_BYTES
from coreason_introspection.utils.logger import logger


class BackgroundTokenInfoServiceClient:
    """
    Thread-safe introspection client running its own event loop.

    Every submitted token is introspected with retries, bounded by the given budget.
    Use as a context manager or call `close()` when done: the background thread keeps running until then.
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
        self._condition = threading.Condition()
        self._submitting = 0
        self._closed = False
        self._pending: set[Future[TokenInfo]] = set()

        self._exit_stack = ExitStack()
        self._portal = self._exit_stack.enter_context(start_blocking_portal())
        try:
            # Created inside the event loop it will be used from
            self._client: TokenInfoServiceClientAsync = self._portal.call(
                lambda: TokenInfoServiceClientAsync(
                    endpoint=endpoint,
                    parser=parser,
                    client=client,
                    http_timeout=http_timeout,
                    max_response_bytes=max_response_bytes,
                    retry_policy=retry_policy,
                    retry_budget=retry_budget,
                    metrics_collector=metrics_collector,
                    pii_salt=pii_salt,
                )
            )
        except BaseException:
            self._exit_stack.close()
            raise

        logger.debug(f"Started background introspection client for {endpoint.endpoint}")

    def __enter__(self) -> "BackgroundTokenInfoServiceClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, token: str, budget: float | None = None) -> "Future[TokenInfo]":
        """
        Schedules the introspection of `token` on the background loop.

        Args:
            token: The access token.
            budget: Seconds the retries may take per endpoint. Defaults to the client's budget.

        Returns:
            Future[TokenInfo]: Resolves to the token info or to the introspection error.

        Raises:
            TokenInfoError: If the client has been closed.
        """
        with self._condition:
            if self._closed:
                raise TokenInfoError("Failed to send token request")
            self._submitting += 1

        # start_task_soon waits for the loop thread, which takes the lock in _discard
        future: Future[TokenInfo] | None = None
        try:
            future = self._portal.start_task_soon(self._client.introspect_with_retry, token, budget)
        finally:
            with self._condition:
                if future is not None:
                    self._pending.add(future)
                self._submitting -= 1
                self._condition.notify_all()

        future.add_done_callback(self._discard)
        return future

    def introspect(self, token: str, budget: float | None = None) -> TokenInfo:
        """
        Introspects `token` on the background loop and blocks until the answer is there.
        """
        return self.submit(token, budget).result()

    def get_user(self, token: str, budget: float | None = None) -> User:
        """
        Like `introspect`, but returns the user the token was issued for.

        Raises:
            NotAUserError: If the token is inactive or names no user.
        """
        return self.introspect(token, budget).to_user()

    def close(self) -> None:
        """
        Waits for submitted introspections, closes the HTTP client and stops the background loop.
        """
        with self._condition:
            if self._closed:
                return
            self._closed = True
            self._condition.wait_for(lambda: self._submitting == 0)
            pending = set(self._pending)

        wait(pending)
        try:
            self._portal.call(self._client.aclose)
        finally:
            self._exit_stack.close()
        logger.debug("Stopped background introspection client")

    def _discard(self, future: "Future[TokenInfo]") -> None:
        with self._condition:
            self._pending.discard(future)
