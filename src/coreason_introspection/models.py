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
Data models for the coreason-introspection package.
"""

from pydantic import BaseModel, ConfigDict, Field

from coreason_introspection.exceptions import NotAUserError


class TokenInfo(BaseModel):
    """
    Information on an access token as reported by a token introspection service.

    See [OAuth 2.0 Token Introspection](https://tools.ietf.org/html/rfc7662).

    This model is frozen (immutable) so it can be shared safely between request handlers.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "active": True,
                "user_id": "test2",
                "scope": ["cn"],
                "expires_in_seconds": 28292,
                "client_id": None,
            }
        },
    )

    active: bool = Field(
        default=True,
        description="Whether the token is currently active. Providers without an active flag report errors instead.",
    )
    user_id: str | None = Field(
        default=None,
        description="Identifier of the resource owner the token was issued for.",
        examples=["test2"],
    )
    scope: tuple[str, ...] = Field(
        default=(),
        description="Scopes granted to the token.",
        examples=[("cn",)],
    )
    expires_in_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Remaining lifetime of the token in seconds.",
        examples=[28292],
    )
    client_id: str | None = Field(
        default=None,
        description="The client the token was issued to, if the provider reports it.",
    )

    def __repr__(self) -> str:
        # The user id is PII and MUST be redacted in __repr__
        user_id = "'<REDACTED>'" if self.user_id is not None else "None"
        return (
            f"TokenInfo(active={self.active!r}, "
            f"user_id={user_id}, "
            f"scope={self.scope!r}, "
            f"expires_in_seconds={self.expires_in_seconds!r}, "
            f"client_id={self.client_id!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()

    def to_user(self) -> "User":
        """
        Returns the resource owner of an active token.

        Raises:
            NotAUserError: If the token is inactive or carries no user id.
        """
        if not self.active:
            raise NotAUserError("Token is not active")
        if self.user_id is None:
            raise NotAUserError("User id is missing in token info")
        return User(user_id=self.user_id, scope=self.scope)


class User(BaseModel):
    """The owner of a protected resource, as named by an active token."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: str = Field(..., description="Identifier of the resource owner.", examples=["test2"])
    scope: tuple[str, ...] = Field(default=(), description="Scopes granted to the token.")

    def __repr__(self) -> str:
        return f"User(user_id='<REDACTED>', scope={self.scope!r})"

    def __str__(self) -> str:
        return self.__repr__()
