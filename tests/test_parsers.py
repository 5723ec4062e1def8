# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_introspection

import json
import os
import time
from typing import Any
from unittest.mock import patch

import pytest

from coreason_introspection.exceptions import InitializationError, TokenInfoParseError
from coreason_introspection.models import TokenInfo
from coreason_introspection.parsers import (
    AmazonTokenInfoParser,
    CustomTokenInfoParser,
    GoogleV3TokenInfoParser,
    PlanBTokenInfoParser,
    RFC7662TokenInfoParser,
)


def _body(data: Any) -> bytes:
    return json.dumps(data).encode("utf-8")


def test_plan_b_token_info() -> None:
    sample = b"""
    {
        "access_token": "token",
        "cn": true,
        "expires_in": 28292,
        "grant_type": "password",
        "open_id": "token",
        "realm": "/services",
        "scope": ["cn"],
        "token_type": "Bearer",
        "uid": "test2"
    }
    """
    info = PlanBTokenInfoParser().parse(sample)

    assert info == TokenInfo(user_id="test2", scope=("cn",), expires_in_seconds=28292)


def test_google_v3_token_info_multiple_scopes() -> None:
    sample = _body(
        {
            "aud": "8819981768.apps.googleusercontent.com",
            "user_id": "123456789",
            "scope": "a b https://www.googleapis.com/auth/drive.metadata.readonly d",
            "expires_in": 436,
        }
    )
    info = GoogleV3TokenInfoParser().parse(sample)

    assert info.user_id == "123456789"
    assert info.scope == ("a", "b", "https://www.googleapis.com/auth/drive.metadata.readonly", "d")
    assert info.expires_in_seconds == 436
    assert info.client_id == "8819981768.apps.googleusercontent.com"


def test_google_v3_token_info_scopes_with_extra_whitespace() -> None:
    sample = _body(
        {
            "user_id": "123456789",
            "scope": " a     b  https://www.googleapis.com/auth/drive.metadata.readonly d   ",
            "expires_in": 436,
        }
    )
    info = GoogleV3TokenInfoParser().parse(sample)

    assert info.scope == ("a", "b", "https://www.googleapis.com/auth/drive.metadata.readonly", "d")
    assert info.client_id is None


def test_amazon_token_info() -> None:
    sample = _body(
        {
            "iss": "https://www.amazon.com",
            "user_id": "amznl.account.K2LI23KL2LK2",
            "aud": "amznl.oa2-client.ASFWDFBRN",
            "app_id": "amznl.application.436457DFHDH",
            "exp": 3597,
            "iat": 1311280970,
        }
    )
    info = AmazonTokenInfoParser().parse(sample)

    assert info.user_id == "amznl.account.K2LI23KL2LK2"
    assert info.scope == ()
    assert info.expires_in_seconds == 3597
    assert info.client_id == "amznl.oa2-client.ASFWDFBRN"


def test_rfc7662_active_token() -> None:
    exp = int(time.time()) + 3600
    sample = _body({"active": True, "sub": "Z5O3upPC88QrAjx00dis", "scope": "read write", "exp": exp, "client_id": "l238j323ds-23ij4"})
    info = RFC7662TokenInfoParser().parse(sample)

    assert info.active is True
    assert info.user_id == "Z5O3upPC88QrAjx00dis"
    assert info.scope == ("read", "write")
    assert info.client_id == "l238j323ds-23ij4"
    assert info.expires_in_seconds is not None
    assert 3590 <= info.expires_in_seconds <= 3600


def test_rfc7662_minimal_active_token() -> None:
    info = RFC7662TokenInfoParser().parse(b'{"active": true}')
    assert info == TokenInfo(active=True)


def test_rfc7662_expired_timestamp_clamps_to_zero() -> None:
    sample = _body({"active": True, "exp": int(time.time()) - 100})
    assert RFC7662TokenInfoParser().parse(sample).expires_in_seconds == 0


def test_inactive_token_short_circuits() -> None:
    """An inactive answer carries nothing else, even if the other fields are garbage."""
    sample = _body({"active": False, "sub": 42, "scope": 7, "exp": "soon"})
    assert RFC7662TokenInfoParser().parse(sample) == TokenInfo(active=False)


@pytest.mark.parametrize(("value", "expected"), [("true", True), ("false", False)])
def test_active_flag_as_string(value: str, expected: bool) -> None:
    info = RFC7662TokenInfoParser().parse(_body({"active": value}))
    assert info.active is expected


@pytest.mark.parametrize("value", [None, 1, "yes", []])
def test_active_flag_invalid(value: Any) -> None:
    data = {} if value is None else {"active": value}
    with pytest.raises(TokenInfoParseError, match="'active' field"):
        RFC7662TokenInfoParser().parse(_body(data))


def test_missing_user_id_is_an_error_when_strict() -> None:
    with pytest.raises(TokenInfoParseError, match="user id in field 'uid' but found nothing"):
        PlanBTokenInfoParser().parse(_body({"scope": ["cn"], "expires_in": 10}))


def test_user_id_must_be_a_string() -> None:
    with pytest.raises(TokenInfoParseError, match="found a int"):
        PlanBTokenInfoParser().parse(_body({"uid": 12, "expires_in": 10}))


def test_missing_expires_in_is_an_error_when_strict() -> None:
    with pytest.raises(TokenInfoParseError, match="'expires_in' for expires_in_seconds not found"):
        PlanBTokenInfoParser().parse(_body({"uid": "test2"}))


def test_missing_fields_are_none_when_not_strict() -> None:
    parser = CustomTokenInfoParser(user_id_field="uid", expires_in_field="expires_in", strict=False)
    assert parser.parse(b"{}") == TokenInfo()


def test_missing_scope_means_no_scopes() -> None:
    info = PlanBTokenInfoParser().parse(_body({"uid": "test2", "expires_in": 1}))
    assert info.scope == ()


@pytest.mark.parametrize("scope", [42, {"a": "b"}, True])
def test_scope_of_wrong_type(scope: Any) -> None:
    with pytest.raises(TokenInfoParseError, match="array or string"):
        PlanBTokenInfoParser().parse(_body({"uid": "u", "scope": scope, "expires_in": 1}))


def test_scope_array_with_non_string_element() -> None:
    with pytest.raises(TokenInfoParseError, match=r"scope in \['scope'\] but found a int"):
        PlanBTokenInfoParser().parse(_body({"uid": "u", "scope": ["cn", 1], "expires_in": 1}))


@pytest.mark.parametrize(("raw", "expected"), [(10.4, 10), (10.5, 11), (0.5, 1), (0, 0), (28292.0, 28292)])
def test_expires_in_is_rounded(raw: float, expected: int) -> None:
    info = PlanBTokenInfoParser().parse(_body({"uid": "u", "expires_in": raw}))
    assert info.expires_in_seconds == expected


def test_negative_expires_in_is_an_error() -> None:
    with pytest.raises(TokenInfoParseError, match="must be greater than 0"):
        PlanBTokenInfoParser().parse(_body({"uid": "u", "expires_in": -5}))


@pytest.mark.parametrize("value", ["100", True, None, [1]])
def test_expires_in_must_be_a_number(value: Any) -> None:
    with pytest.raises(TokenInfoParseError, match="Expected a number"):
        PlanBTokenInfoParser().parse(_body({"uid": "u", "expires_in": value}))


@pytest.mark.parametrize("digits", [400, 5000])
def test_huge_expires_in_is_a_parse_error(digits: int) -> None:
    body = b'{"uid": "u", "expires_in": ' + b"9" * digits + b"}"
    with pytest.raises(TokenInfoParseError):
        PlanBTokenInfoParser().parse(body)


@pytest.mark.parametrize("digits", [400, 5000])
def test_huge_exp_timestamp_is_a_parse_error(digits: int) -> None:
    body = b'{"active": true, "exp": ' + b"9" * digits + b"}"
    with pytest.raises(TokenInfoParseError):
        RFC7662TokenInfoParser().parse(body)


@pytest.mark.parametrize("literal", [b"Infinity", b"-Infinity", b"NaN"])
def test_non_finite_expires_in_is_a_parse_error(literal: bytes) -> None:
    body = b'{"uid": "u", "expires_in": ' + literal + b"}"
    with pytest.raises(TokenInfoParseError, match="out of range"):
        PlanBTokenInfoParser().parse(body)


def test_client_id_must_be_a_string() -> None:
    with pytest.raises(TokenInfoParseError, match="client id"):
        GoogleV3TokenInfoParser().parse(_body({"user_id": "u", "expires_in": 1, "aud": ["a", "b"]}))


def test_invalid_utf8() -> None:
    with pytest.raises(TokenInfoParseError, match="String was not UTF-8"):
        PlanBTokenInfoParser().parse(b"\xff\xfe{}")


def test_invalid_json() -> None:
    with pytest.raises(TokenInfoParseError, match="Invalid JSON"):
        PlanBTokenInfoParser().parse(b"{not json")


def test_non_object_is_not_echoed() -> None:
    """The body may contain the token, so it must never end up in the error message."""
    with pytest.raises(TokenInfoParseError) as exc_info:
        PlanBTokenInfoParser().parse(b'["secret-token-value"]')

    assert "secret-token-value" not in str(exc_info.value)
    assert "Expected an object" in str(exc_info.value)


def test_custom_parser_without_fields() -> None:
    """A parser looking up nothing reports an active token without details."""
    assert CustomTokenInfoParser().parse(b'{"uid": "ignored"}') == TokenInfo(active=True)


def test_custom_parser_from_env() -> None:
    with patch.dict(
        os.environ,
        {
            "COREASON_INTROSPECTION_PARSER_USER_ID_FIELD": "uid",
            "COREASON_INTROSPECTION_PARSER_SCOPE_FIELD": "scope",
            "COREASON_INTROSPECTION_PARSER_EXPIRES_IN_FIELD": "expires_in",
        },
    ):
        parser = CustomTokenInfoParser.from_env()

    assert parser.user_id_field == "uid"
    assert parser.scope_field == "scope"
    assert parser.expires_in_field == "expires_in"
    assert parser.active_field is None
    assert parser.strict is True

    info = parser.parse(_body({"uid": "test2", "scope": ["cn"], "expires_in": 5}))
    assert info == TokenInfo(user_id="test2", scope=("cn",), expires_in_seconds=5)


def test_custom_parser_from_env_invalid() -> None:
    with patch.dict(os.environ, {"COREASON_INTROSPECTION_PARSER_STRICT": "not-a-bool"}):
        with pytest.raises(InitializationError, match="Invalid token info parser configuration"):
            CustomTokenInfoParser.from_env()
