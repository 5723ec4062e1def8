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
Retry wrapper for introspection calls. The backoff itself is stamina's.
"""

from typing import Any

import stamina
from pydantic import BaseModel, ConfigDict, Field

from coreason_introspection.exceptions import BudgetExceededError, TokenInfoError


class RetryPolicy(BaseModel):
    """
    Exponential backoff settings passed to `stamina.retry_context`.

    The total duration is not part of the policy: every call brings its own budget.
    """

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=10, ge=1)
    wait_initial: float = Field(default=0.01, ge=0)
    wait_max: float = Field(default=1.0, ge=0)
    wait_jitter: float = Field(default=0.0, ge=0)
    wait_exp_base: float = Field(default=2.0, ge=1)

    @classmethod
    def blocking(cls) -> "RetryPolicy":
        """Defaults for the blocking client: 10ms initial wait, factor 1.5, no jitter."""
        return cls(wait_initial=0.01, wait_exp_base=1.5, wait_max=0.1)

    @classmethod
    def background(cls) -> "RetryPolicy":
        """Defaults for the async clients: 10ms initial wait, factor 2, jittered."""
        return cls(wait_initial=0.01, wait_exp_base=2.0, wait_max=0.5, wait_jitter=0.01)


def should_retry(exc: Exception) -> bool:
    """Only transient introspection failures are retried."""
    return isinstance(exc, TokenInfoError) and exc.is_retry_suggested


def retry_context(policy: RetryPolicy, budget: float) -> Any:
    """
    Creates a stamina retry context bounded by `budget` seconds.

    Usable with `for` in blocking code and `async for` in async code.

    Args:
        policy: The backoff settings.
        budget: Total seconds the retries may take.

    Returns:
        The stamina retry context.

    Raises:
        BudgetExceededError: If the budget is zero or negative.
    """
    if budget <= 0:
        raise BudgetExceededError(f"Initial request budget was {budget}s")

    return stamina.retry_context(
        on=should_retry,
        attempts=policy.attempts,
        timeout=budget,
        wait_initial=policy.wait_initial,
        wait_max=policy.wait_max,
        wait_jitter=policy.wait_jitter,
        wait_exp_base=policy.wait_exp_base,
    )
