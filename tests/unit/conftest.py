# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Pytest fixtures for unit tests."""

import asyncio
import logging
from typing import Any, Optional

import pytest

from jobhound.framework import StateSchema


class StubAgent:
    """Deterministic collaborator that records every payload it receives."""

    def __init__(
        self,
        result: Any = None,
        *,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    def invoke(self, payload):
        self.calls.append(payload)
        if self.error is not None:
            raise self.error
        return self.result


class AsyncStubAgent(StubAgent):
    """StubAgent exposing ``ainvoke``."""

    async def ainvoke(self, payload):
        self.calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def schema() -> StateSchema:
    """Schema with two overwrite channels and one append channel."""
    return StateSchema.build(overwrite=["x", "y"], append=["history"])


@pytest.fixture(autouse=True)
def reset_jobhound_logger():
    """Reset the jobhound logger so caplog sees its records."""
    logger = logging.getLogger("jobhound")

    original_handlers = logger.handlers.copy()
    original_level = logger.level
    original_propagate = logger.propagate

    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.DEBUG)

    yield

    logger.handlers = original_handlers
    logger.level = original_level
    logger.propagate = original_propagate


@pytest.fixture
def make_agent():
    """Factory for synchronous stub agents."""
    return StubAgent


@pytest.fixture
def make_async_agent():
    """Factory for stub agents exposing ``ainvoke``."""
    return AsyncStubAgent
