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
Metrics reported by the async introspection clients.

A "request" is one call of `introspect`/`introspect_with_retry` on a client.
A "service call" is one HTTP exchange with an introspection endpoint; a request
may make several of them (retries, fallback).
"""

import time
from typing import Protocol

from opentelemetry import metrics

METER_NAME = "coreason_introspection"


class MetricsCollector(Protocol):
    """
    Receives timing events from an introspection client.

    Every `started` argument is a `time.monotonic()` value.
    """

    def incoming_introspection_request(self) -> None:
        """A token was handed to the client."""
        ...

    def introspection_request(self, started: float) -> None:
        """A request was accepted and is about to be executed."""
        ...

    def introspection_request_success(self, started: float) -> None:
        """A request produced a `TokenInfo`."""
        ...

    def introspection_request_failure(self, started: float) -> None:
        """A request ended with an error."""
        ...

    def introspection_service_call(self, started: float) -> None:
        """An HTTP call to an introspection endpoint is about to be made."""
        ...

    def introspection_service_call_success(self, started: float) -> None:
        """An HTTP response was received, whatever its status."""
        ...

    def introspection_service_call_failure(self, started: float) -> None:
        """No HTTP response could be obtained."""
        ...


class NullMetricsCollector:
    """A `MetricsCollector` that discards everything."""

    def incoming_introspection_request(self) -> None:
        pass

    def introspection_request(self, started: float) -> None:
        pass

    def introspection_request_success(self, started: float) -> None:
        pass

    def introspection_request_failure(self, started: float) -> None:
        pass

    def introspection_service_call(self, started: float) -> None:
        pass

    def introspection_service_call_success(self, started: float) -> None:
        pass

    def introspection_service_call_failure(self, started: float) -> None:
        pass


class OpenTelemetryMetricsCollector:
    """
    A `MetricsCollector` recording through the OpenTelemetry metrics API.

    Without a `meter_provider` the globally configured one is used, so nothing is
    exported unless the application installs an SDK.

    Instruments:
        introspection.requests.incoming: Tokens handed to the client.
        introspection.requests: Requests executed.
        introspection.request.duration: Request duration in seconds, by `outcome`.
        introspection.service.calls: HTTP calls made.
        introspection.service.call.duration: HTTP call duration in seconds, by `outcome`.
    """

    def __init__(self, meter_provider: metrics.MeterProvider | None = None) -> None:
        if meter_provider is None:
            meter = metrics.get_meter(METER_NAME)
        else:
            meter = meter_provider.get_meter(METER_NAME)

        self._incoming = meter.create_counter(
            "introspection.requests.incoming",
            unit="1",
            description="Tokens handed to the introspection client.",
        )
        self._requests = meter.create_counter(
            "introspection.requests",
            unit="1",
            description="Introspection requests executed.",
        )
        self._request_duration = meter.create_histogram(
            "introspection.request.duration",
            unit="s",
            description="Duration of introspection requests, including retries and fallback.",
        )
        self._service_calls = meter.create_counter(
            "introspection.service.calls",
            unit="1",
            description="HTTP calls made to introspection endpoints.",
        )
        self._service_call_duration = meter.create_histogram(
            "introspection.service.call.duration",
            unit="s",
            description="Duration of single HTTP calls to introspection endpoints.",
        )

    def incoming_introspection_request(self) -> None:
        self._incoming.add(1)

    def introspection_request(self, started: float) -> None:
        self._requests.add(1)

    def introspection_request_success(self, started: float) -> None:
        self._request_duration.record(_elapsed(started), {"outcome": "success"})

    def introspection_request_failure(self, started: float) -> None:
        self._request_duration.record(_elapsed(started), {"outcome": "failure"})

    def introspection_service_call(self, started: float) -> None:
        self._service_calls.add(1)

    def introspection_service_call_success(self, started: float) -> None:
        self._service_call_duration.record(_elapsed(started), {"outcome": "success"})

    def introspection_service_call_failure(self, started: float) -> None:
        self._service_call_duration.record(_elapsed(started), {"outcome": "failure"})


def _elapsed(started: float) -> float:
    return max(0.0, time.monotonic() - started)
