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

"""Stage contract: the unit of work a graph node runs.

A stage handler receives a read-only snapshot of the state and returns one of:
    - a mapping: the delta to merge into the state
    - ``Failure(message, cause)``: the stage could not do its work
    - ``None``: nothing to merge

Handlers may be sync or async. Sync handlers are run in a worker thread so the
engine's per-stage timeout can bound them.

Stages that wrap an external collaborator (job-board search, LLM call, browser
driver, calendar client) should normalize its faults into ``Failure`` before
returning. ``collaborator_stage`` does that for any object exposing
``invoke(payload)`` or ``ainvoke(payload)``.

Example:
    from jobhound.framework.stage import Failure, Stage

    async def score_jobs(state):
        try:
            scores = await scorer.score(state["job_scout_results"])
        except ScorerError as e:
            return Failure("Scoring failed", cause=e)
        return {"analysis_results": scores}

    stage = Stage("analysis", score_jobs,
                  reads=["job_scout_results"], writes=["analysis_results"])
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from jobhound.core.errors import describe_exception
from jobhound.framework.errors import StageFailure

logger = logging.getLogger(__name__)

StageResult = Union[Mapping[str, Any], "Failure", None]
StageHandler = Callable[[Any], Union[StageResult, Awaitable[StageResult]]]


class FailureKind(str, Enum):
    """What produced a failure record."""

    STAGE_FAILURE = "stage_failure"
    TIMEOUT = "timeout"
    ROUTING_ERROR = "routing_error"
    INTERNAL_ERROR = "internal_error"


def _normalize_cause(cause: Any) -> Optional[str]:
    if cause is None:
        return None
    if isinstance(cause, BaseException):
        return describe_exception(cause)
    return str(cause)


@dataclass(frozen=True)
class Failure:
    """Returned by a handler to signal that its stage failed.

    Attributes:
        message: Human-readable description
        cause: Underlying fault (exception, string, or None)
    """

    message: str
    cause: Any = None

    @classmethod
    def from_exception(cls, exc: BaseException, message: Optional[str] = None) -> "Failure":
        return cls(message=message or str(exc) or type(exc).__name__, cause=exc)


@dataclass(frozen=True)
class FailureRecord:
    """Entry appended to the ``errors`` channel.

    Attributes:
        node: Node that failed
        message: Human-readable description
        cause: Normalized cause, ``"Type: message"`` for exceptions
        kind: One of the ``FailureKind`` values
    """

    node: str
    message: str
    cause: Optional[str] = None
    kind: str = FailureKind.STAGE_FAILURE.value

    @property
    def error(self) -> str:
        return self.message

    @classmethod
    def from_failure(
        cls,
        node: str,
        failure: Failure,
        kind: FailureKind = FailureKind.STAGE_FAILURE,
    ) -> "FailureRecord":
        return cls(
            node=node,
            message=failure.message,
            cause=_normalize_cause(failure.cause),
            kind=kind.value,
        )

    @classmethod
    def from_exception(
        cls,
        node: str,
        exc: BaseException,
        kind: FailureKind = FailureKind.STAGE_FAILURE,
    ) -> "FailureRecord":
        if isinstance(exc, StageFailure):
            cause = _normalize_cause(exc.cause) if exc.cause is not None else None
            return cls(node=node, message=exc.message, cause=cause, kind=kind.value)
        return cls(
            node=node,
            message=str(exc) or type(exc).__name__,
            cause=describe_exception(exc),
            kind=kind.value,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FailureRecord":
        return cls(
            node=data["node"],
            message=data.get("message", data.get("error", "")),
            cause=data.get("cause"),
            kind=data.get("kind", FailureKind.STAGE_FAILURE.value),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "message": self.message,
            "cause": self.cause,
            "kind": self.kind,
        }


def _is_async_callable(func: Any) -> bool:
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


@dataclass(frozen=True)
class Stage:
    """A named unit of work.

    Attributes:
        name: Unique node name
        handler: Callable taking a state snapshot
        reads: Channels the stage consumes
        writes: Channels the stage's delta may contain
        timeout: Per-stage timeout in seconds (engine default when None)
        metadata: Additional stage metadata
    """

    name: str
    handler: StageHandler
    reads: tuple[str, ...] = ()
    writes: tuple[str, ...] = ()
    timeout: Optional[float] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "reads", tuple(self.reads))
        object.__setattr__(self, "writes", tuple(self.writes))
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Stage '{self.name}' timeout must be positive, got {self.timeout}")

    @property
    def is_async(self) -> bool:
        return _is_async_callable(self.handler)

    async def invoke(self, snapshot: Any) -> Any:
        """Run the handler, awaiting it or offloading it to a thread."""
        if self.is_async:
            result = self.handler(snapshot)
        else:
            result = await asyncio.to_thread(self.handler, snapshot)
        if inspect.isawaitable(result):
            result = await result
        return result


async def _call_collaborator(collaborator: Any, payload: dict[str, Any]) -> Any:
    ainvoke = getattr(collaborator, "ainvoke", None)
    if ainvoke is not None:
        return await ainvoke(payload)
    invoke = getattr(collaborator, "invoke", None)
    if invoke is None:
        raise TypeError(f"{type(collaborator).__name__} has no invoke() or ainvoke() method")
    if _is_async_callable(invoke):
        return await invoke(payload)
    result = await asyncio.to_thread(invoke, payload)
    if inspect.isawaitable(result):
        result = await result
    return result


def collaborator_stage(
    name: str,
    collaborator: Any,
    *,
    output: str,
    inputs: Optional[Mapping[str, str]] = None,
    on_success: Optional[Mapping[str, Any]] = None,
    timeout: Optional[float] = None,
    **metadata: Any,
) -> Stage:
    """Adapt an external collaborator into a stage.

    The payload passed to the collaborator is the full state (as plain data)
    plus one key per entry of ``inputs``, mapping payload key to the channel
    it is read from. The collaborator's result is written to ``output``.
    Any exception it raises becomes a ``Failure``.

    Args:
        name: Stage name
        collaborator: Object with ``invoke(payload)`` or ``ainvoke(payload)``
        output: Channel receiving the collaborator's result
        inputs: Payload key -> source channel
        on_success: Extra constant channel values written on success
        timeout: Per-stage timeout override
        **metadata: Stage metadata

    Returns:
        Stage wrapping the collaborator
    """
    inputs = dict(inputs or {})
    on_success = dict(on_success or {})

    async def handler(state: Any) -> StageResult:
        payload = state.to_dict()
        for key, channel in inputs.items():
            payload[key] = payload.get(channel)
        try:
            result = await _call_collaborator(collaborator, payload)
        except Exception as e:
            logger.debug(f"Collaborator for stage '{name}' failed: {e}")
            return Failure.from_exception(e)
        return {output: result, **on_success}

    handler.__name__ = f"{name}_handler"
    handler.__qualname__ = handler.__name__
    handler.cache_identity = collaborator  # type: ignore[attr-defined]

    return Stage(
        name=name,
        handler=handler,
        reads=tuple(inputs.values()),
        writes=(output, *on_success),
        timeout=timeout,
        metadata=metadata,
    )


__all__ = [
    "Stage",
    "StageHandler",
    "StageResult",
    "Failure",
    "FailureKind",
    "FailureRecord",
    "collaborator_stage",
]
