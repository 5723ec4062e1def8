# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_introspection

import os
from collections.abc import Generator

import pytest
import stamina


@pytest.fixture(autouse=True)
def stamina_testing_mode() -> Generator[None, None, None]:
    """
    Puts stamina into testing mode: no backoff waits and at most 3 attempts per retried call.

    Tests asserting on call counts rely on the 3.
    """
    stamina.set_testing(True, attempts=3)
    yield
    stamina.set_testing(False)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Removes introspection settings leaking in from the developer's shell."""
    for key in list(os.environ):
        if key.upper().startswith("COREASON_INTROSPECTION_"):
            monkeypatch.delenv(key)
