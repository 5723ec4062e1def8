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
Custom exceptions for the coreason-introspection package.
"""


class CoreasonIntrospectionError(Exception):
    """Base exception for all coreason-introspection errors."""


class InitializationError(CoreasonIntrospectionError):
    """Raised when a client, endpoint or parser cannot be constructed from the given settings."""


class InvalidTokenInputError(CoreasonIntrospectionError, ValueError):
    """Raised when the access token handed to a client is empty."""


class TokenInfoParseError(CoreasonIntrospectionError):
    """Raised by a parser when a token info payload cannot be decoded."""


class NotAUserError(CoreasonIntrospectionError):
    """Raised when a user is required but the token info names none, or the token is inactive."""


class TokenInfoError(CoreasonIntrospectionError):
    """
    Raised when introspecting a token fails.

    Subclasses decide whether the failure is transient (`is_retry_suggested`)
    and whether a fallback endpoint may be asked instead (`allows_fallback`).
    """

    is_retry_suggested: bool = True
    allows_fallback: bool = True


class InvalidResponseContentError(TokenInfoError):
    """The introspection service answered 200 but the payload was not a valid token info."""

    is_retry_suggested = False


class OversizedResponseError(InvalidResponseContentError):
    """Raised when an HTTP response is too large."""


class UrlError(TokenInfoError):
    """The introspection URL could not be built for the token."""

    is_retry_suggested = False


class NotAuthenticatedError(TokenInfoError):
    """The introspection service refused the token (HTTP 401)."""

    is_retry_suggested = False


class IntrospectionConnectionError(TokenInfoError):
    """The connection to the introspection service failed."""


class IntrospectionIOError(TokenInfoError):
    """The response body could not be read."""


class StatusError(TokenInfoError):
    """Base for failures carrying the HTTP status returned by the introspection service."""

    label = "Unexpected response"

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{self.label}({status_code}): {message}")
        self.status_code = status_code
        self.body = message


class ClientError(StatusError):
    """Our request was rejected with a 4xx status other than 401."""

    label = "Client error"
    is_retry_suggested = False
    allows_fallback = False


class ServerError(StatusError):
    """The introspection service failed with a 5xx status."""

    label = "Server error"


class UnexpectedResponseError(StatusError):
    """The introspection service answered with a status we do not handle (1xx, 2xx other than 200, 3xx)."""


class BudgetExceededError(TokenInfoError):
    """The time budget for a retried introspection was used up."""

    is_retry_suggested = False
    allows_fallback = False
