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
OAuth2 access token verification against remote token introspection endpoints (RFC 7662 and tokeninfo).
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .async_client import AsyncTokenInfoService, TokenInfoServiceClientAsync
from .background import BackgroundTokenInfoServiceClient
from .client import TokenInfoService, TokenInfoServiceClient, TokenInfoServiceClientBuilder
from .config import IntrospectionConfig, ParserConfig
from .endpoint import IntrospectionEndpoint
from .exceptions import (
    BudgetExceededError,
    ClientError,
    CoreasonIntrospectionError,
    InitializationError,
    InvalidResponseContentError,
    InvalidTokenInputError,
    NotAUserError,
    NotAuthenticatedError,
    ServerError,
    TokenInfoError,
)
from .metrics import MetricsCollector, NullMetricsCollector, OpenTelemetryMetricsCollector
from .models import TokenInfo, User
from .parsers import (
    AmazonTokenInfoParser,
    CustomTokenInfoParser,
    GoogleV3TokenInfoParser,
    PlanBTokenInfoParser,
    RFC7662TokenInfoParser,
    TokenInfoParser,
)
from .retry import RetryPolicy

__all__ = [
    "AmazonTokenInfoParser",
    "AsyncTokenInfoService",
    "BackgroundTokenInfoServiceClient",
    "BudgetExceededError",
    "ClientError",
    "CoreasonIntrospectionError",
    "CustomTokenInfoParser",
    "GoogleV3TokenInfoParser",
    "InitializationError",
    "IntrospectionConfig",
    "IntrospectionEndpoint",
    "InvalidResponseContentError",
    "InvalidTokenInputError",
    "MetricsCollector",
    "NotAUserError",
    "NotAuthenticatedError",
    "NullMetricsCollector",
    "OpenTelemetryMetricsCollector",
    "ParserConfig",
    "PlanBTokenInfoParser",
    "RFC7662TokenInfoParser",
    "RetryPolicy",
    "ServerError",
    "TokenInfo",
    "TokenInfoError",
    "TokenInfoParser",
    "TokenInfoService",
    "TokenInfoServiceClient",
    "TokenInfoServiceClientAsync",
    "TokenInfoServiceClientBuilder",
    "User",
]
