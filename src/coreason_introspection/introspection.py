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
Pieces shared by the blocking and the async introspection clients.
"""

import hashlib
import hmac
from http import HTTPStatus

from pydantic import SecretStr

from coreason_introspection.exceptions import (
    ClientError,
    InvalidResponseContentError,
    InvalidTokenInputError,
    NotAuthenticatedError,
    ServerError,
    TokenInfoParseError,
    UnexpectedResponseError,
)
from coreason_introspection.models import TokenInfo
from coreason_introspection.parsers import TokenInfoParser
from coreason_introspection.transport import RawResponse

MAX_ERROR_BODY_CHARS = 500


def normalize_token(token: str) -> str:
    """
    Strips the token and rejects empty ones before anything goes over the wire.

    Raises:
        InvalidTokenInputError: If the token is empty or blank.
    """
    if not isinstance(token, str) or not token.strip():
        raise InvalidTokenInputError("Access token must be a non-empty string.")
    return token.strip()


def fingerprint_token(token: str, salt: SecretStr) -> str:
    """
    Anonymizes a token using HMAC-SHA256 with the configured salt.

    Args:
        token: The access token.
        salt: The PII salt.

    Returns:
        str: A short hex fingerprint, safe to log.
    """
    return hmac.new(
        salt.get_secret_value().encode("utf-8"),
        token.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()[:16]


def _body_text(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    if len(text) > MAX_ERROR_BODY_CHARS:
        return f"{text[:MAX_ERROR_BODY_CHARS]}..."
    return text


def process_response(response: RawResponse, parser: TokenInfoParser) -> TokenInfo:
    """
    Maps an HTTP answer of the introspection service to a `TokenInfo` or an error.

    Args:
        response: Status code and body.
        parser: The parser for 200 answers.

    Returns:
        TokenInfo: The parsed token info.

    Raises:
        InvalidResponseContentError: If a 200 answer cannot be parsed.
        NotAuthenticatedError: On 401.
        ClientError: On any other 4xx.
        ServerError: On 5xx.
        UnexpectedResponseError: On any other status.
    """
    status = response.status_code

    if status == HTTPStatus.OK:
        try:
            return parser.parse(response.body)
        except TokenInfoParseError as e:
            raise InvalidResponseContentError(str(e)) from e

    message = _body_text(response.body)
    if status == HTTPStatus.UNAUTHORIZED:
        raise NotAuthenticatedError(f"The server refused the token: {message}")
    if 400 <= status < 500:
        raise ClientError(status, message)
    if 500 <= status < 600:
        raise ServerError(status, message)
    raise UnexpectedResponseError(status, message)
