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
Parsers turning the JSON answer of a token info service into a `TokenInfo`.

Providers disagree on field names (`uid` vs `user_id` vs `sub`, `expires_in` vs `exp`),
so every parser is a `CustomTokenInfoParser` configured with the field names of one provider.
"""

import json
import math
import time
from typing import Any, Protocol

from pydantic import ValidationError

from coreason_introspection.config import ParserConfig
from coreason_introspection.exceptions import InitializationError, TokenInfoParseError
from coreason_introspection.models import TokenInfo


class TokenInfoParser(Protocol):
    """Protocol for anything that can turn a response body into a `TokenInfo`."""

    def parse(self, body: bytes) -> TokenInfo:
        """
        Parses the raw response body.

        Raises:
            TokenInfoParseError: If the body is not a valid token info.
        """
        ...


class CustomTokenInfoParser:
    """
    A configurable `TokenInfoParser`.

    A field name set to None is not looked up at all:
    no `active_field` means every answer is treated as active, since such providers
    answer with an error status for tokens that are no longer valid.

    Attributes:
        active_field (str | None): Field holding the RFC 7662 `active` flag.
        user_id_field (str | None): Field holding the user id.
        scope_field (str | None): Field holding the scopes (array or space separated string).
        expires_in_field (str | None): Field holding the expiry.
        client_id_field (str | None): Field holding the client id.
        strict (bool): If True, a configured user id or expiry field must be present.
        expires_is_timestamp (bool): If True, the expiry field is an absolute epoch timestamp.
    """

    def __init__(
        self,
        active_field: str | None = None,
        user_id_field: str | None = None,
        scope_field: str | None = None,
        expires_in_field: str | None = None,
        client_id_field: str | None = None,
        strict: bool = True,
        expires_is_timestamp: bool = False,
    ) -> None:
        self.active_field = active_field
        self.user_id_field = user_id_field
        self.scope_field = scope_field
        self.expires_in_field = expires_in_field
        self.client_id_field = client_id_field
        self.strict = strict
        self.expires_is_timestamp = expires_is_timestamp

    @classmethod
    def from_env(cls) -> "CustomTokenInfoParser":
        """
        Creates a parser from `COREASON_INTROSPECTION_PARSER_*` environment variables.

        Returns:
            CustomTokenInfoParser: The configured parser.

        Raises:
            InitializationError: If the environment holds invalid values.
        """
        try:
            config = ParserConfig()
        except ValidationError as e:
            raise InitializationError(f"Invalid token info parser configuration: {e}") from e

        return cls(
            active_field=config.active_field,
            user_id_field=config.user_id_field,
            scope_field=config.scope_field,
            expires_in_field=config.expires_in_field,
            client_id_field=config.client_id_field,
            strict=config.strict,
            expires_is_timestamp=config.expires_is_timestamp,
        )

    def parse(self, body: bytes) -> TokenInfo:
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TokenInfoParseError(f"String was not UTF-8: {e}") from e

        try:
            data = json.loads(text)
        except ValueError as e:
            # Also raised for integer literals beyond the interpreter's digit limit
            raise TokenInfoParseError(f"Invalid JSON: {e}") from e

        if not isinstance(data, dict):
            # Do not echo the payload, it might contain a token.
            raise TokenInfoParseError(
                "Expected an object but found something else which won't be shown since it might contain a token."
            )

        active = self._parse_active(data)
        if not active:
            # RFC 7662: an inactive answer should carry no further information.
            return TokenInfo(active=False)

        return TokenInfo(
            active=True,
            user_id=self._parse_user_id(data),
            scope=self._parse_scope(data),
            expires_in_seconds=self._parse_expires_in(data),
            client_id=self._parse_client_id(data),
        )

    def _parse_active(self, data: dict[str, Any]) -> bool:
        if self.active_field is None:
            return True

        value = data.get(self.active_field)
        if isinstance(value, bool):
            return value
        if value in ("true", "false"):
            return value == "true"
        raise TokenInfoParseError(
            f"Expected a boolean as the 'active' field in '{self.active_field}' but found {_describe(value)}"
        )

    def _parse_user_id(self, data: dict[str, Any]) -> str | None:
        if self.user_id_field is None:
            return None

        value = data.get(self.user_id_field)
        if isinstance(value, str):
            return value
        if value is None and not self.strict:
            return None
        raise TokenInfoParseError(
            f"Expected a string as the user id in field '{self.user_id_field}' but found {_describe(value)}"
        )

    def _parse_scope(self, data: dict[str, Any]) -> tuple[str, ...]:
        if self.scope_field is None or self.scope_field not in data:
            return ()

        value = data[self.scope_field]
        if isinstance(value, str):
            return tuple(value.split())
        if isinstance(value, list):
            for element in value:
                if not isinstance(element, str):
                    raise TokenInfoParseError(
                        f"Expected a string as a scope in ['{self.scope_field}'] but found {_describe(element)}"
                    )
            return tuple(value)
        raise TokenInfoParseError(
            f"Expected an array or string for the scope(s) in field '{self.scope_field}' but found {_describe(value)}"
        )

    def _parse_expires_in(self, data: dict[str, Any]) -> int | None:
        if self.expires_in_field is None:
            return None

        if self.expires_in_field not in data:
            if not self.strict:
                return None
            raise TokenInfoParseError(f"Field '{self.expires_in_field}' for expires_in_seconds not found.")

        value = data[self.expires_in_field]
        # bool is an int subclass in Python but not a JSON number
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TokenInfoParseError(
                f"Expected a number for field '{self.expires_in_field}' but found {_describe(value)}"
            )

        try:
            seconds = float(value)
        except OverflowError as e:
            raise TokenInfoParseError(f"Field '{self.expires_in_field}' for expires_in_seconds is out of range.") from e
        if not math.isfinite(seconds):
            raise TokenInfoParseError(f"Field '{self.expires_in_field}' for expires_in_seconds is out of range.")

        if self.expires_is_timestamp:
            return _round_half_away(max(0.0, seconds - time.time()))

        expires_in = _round_half_away(seconds)
        if expires_in < 0:
            raise TokenInfoParseError(
                f"Field '{self.expires_in_field}' for expires_in_seconds must be greater than 0 (is {expires_in})."
            )
        return expires_in

    def _parse_client_id(self, data: dict[str, Any]) -> str | None:
        if self.client_id_field is None:
            return None

        value = data.get(self.client_id_field)
        if value is None or isinstance(value, str):
            return value
        raise TokenInfoParseError(
            f"Expected a string as the client id in field '{self.client_id_field}' but found {_describe(value)}"
        )


class PlanBTokenInfoParser(CustomTokenInfoParser):
    """
    Parser for the Plan B token info endpoint.

    [Description](http://planb.readthedocs.io/en/latest/intro.html#token-info)
    """

    def __init__(self) -> None:
        super().__init__(user_id_field="uid", scope_field="scope", expires_in_field="expires_in")


class GoogleV3TokenInfoParser(CustomTokenInfoParser):
    """
    Parser for Google's v3 tokeninfo endpoint.

    [Description](https://developers.google.com/identity/protocols/OAuth2UserAgent#validatetoken)
    """

    def __init__(self) -> None:
        super().__init__(
            user_id_field="user_id",
            scope_field="scope",
            expires_in_field="expires_in",
            client_id_field="aud",
        )


class AmazonTokenInfoParser(CustomTokenInfoParser):
    """Parser for the Login with Amazon tokeninfo endpoint. Amazon reports the remaining lifetime in `exp`."""

    def __init__(self) -> None:
        super().__init__(
            user_id_field="user_id",
            scope_field="scope",
            expires_in_field="exp",
            client_id_field="aud",
        )


class RFC7662TokenInfoParser(CustomTokenInfoParser):
    """
    Parser for a standard RFC 7662 introspection response.

    Only `active` is mandatory. `exp` is an absolute timestamp and is converted to remaining seconds.
    """

    def __init__(self) -> None:
        super().__init__(
            active_field="active",
            user_id_field="sub",
            scope_field="scope",
            expires_in_field="exp",
            client_id_field="client_id",
            strict=False,
            expires_is_timestamp=True,
        )


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _describe(value: Any) -> str:
    if value is None:
        return "nothing"
    return f"a {type(value).__name__}"
