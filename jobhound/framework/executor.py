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

"""Execution engine for compiled workflows.

The engine walks a ``CompiledWorkflow`` one stage at a time:

    1. stop when the current node is END or status is no longer in_progress
    2. call the stage with a read-only snapshot (bounded by a timeout)
    3. merge the returned delta per channel policy
    4. on failure, append a failure record to ``errors`` and set status=failed
    5. resolve the next node against the post-merge state

Failures are data: ``invoke``/``run`` never raise for a compiled workflow.
Every outcome, success or failure, comes back as a final state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from jobhound.core.errors import describe_exception
from jobhound.framework.channels import ERRORS, STATUS, WorkflowStatus
from jobhound.framework.errors import RoutingError, UndeclaredChannelError
from jobhound.framework.graph import END
from jobhound.framework.stage import Failure, FailureKind, FailureRecord, Stage
from jobhound.framework.state import StateRecord

if TYPE_CHECKING:
    from jobhound.config.settings import WorkflowSettings
    from jobhound.framework.graph import CompiledWorkflow

logger = logging.getLogger(__name__)

# Node name used for failures raised before the first stage runs.
START = "__start__"


@dataclass(frozen=True)
class ExecutionConfig:
    """Execution limits for a workflow run.

    Attributes:
        max_steps: Maximum number of stage invocations per run (cycle safety net)
        stage_timeout: Default per-stage timeout in seconds (None = no limit)
    """

    max_steps: int = 25
    stage_timeout: Optional[float] = 120.0

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be positive, got {self.max_steps}")
        if self.stage_timeout is not None and self.stage_timeout <= 0:
            raise ValueError(f"stage_timeout must be positive, got {self.stage_timeout}")

    @classmethod
    def from_settings(cls, settings: "WorkflowSettings") -> "ExecutionConfig":
        return cls(max_steps=settings.max_steps, stage_timeout=settings.stage_timeout)


@runtime_checkable
class ExecutionHook(Protocol):
    """Observer called around every stage invocation.

    Hooks see each intermediate state. An exception raised by a hook is
    logged and does not affect the run.
    """

    async def before_node(self, node_id: str, state: StateRecord) -> None: ...

    async def after_node(
        self,
        node_id: str,
        state: StateRecord,
        failure: Optional[FailureRecord],
    ) -> None: ...


class TracingHook:
    """Logs every stage transition at INFO."""

    def __init__(self, workflow_name: str = "workflow", project: Optional[str] = None):
        self._prefix = f"[{project}:{workflow_name}]" if project else f"[{workflow_name}]"

    async def before_node(self, node_id: str, state: StateRecord) -> None:
        logger.info(f"{self._prefix} -> {node_id} (errors={len(state.errors)})")

    async def after_node(
        self,
        node_id: str,
        state: StateRecord,
        failure: Optional[FailureRecord],
    ) -> None:
        if failure is None:
            logger.info(f"{self._prefix} <- {node_id} ok")
        else:
            logger.info(f"{self._prefix} <- {node_id} failed: {failure.message}")


@dataclass
class ExecutionResult:
    """Result from a workflow run.

    Attributes:
        state: Final state
        node_history: Nodes invoked, in order
        steps: Number of stage invocations
        duration: Wall-clock run time in seconds
    """

    state: StateRecord
    node_history: list[str] = field(default_factory=list)
    steps: int = 0
    duration: float = 0.0

    @property
    def status(self) -> Any:
        return self.state.status

    @property
    def success(self) -> bool:
        return self.state.status == WorkflowStatus.COMPLETED.value

    @property
    def errors(self) -> tuple[Any, ...]:
        return self.state.errors


class StepCounter:
    """Counts stage invocations and enforces the step limit."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        self.steps = 0
        self.visited_count: dict[str, int] = {}

    def should_continue(self, current_node: str) -> tuple[bool, Optional[str]]:
        """Record a step at ``current_node``.

        Returns:
            (True, None) to proceed, or (False, error_message) when the
            limit is exceeded
        """
        self.steps += 1
        if self.steps > self.max_steps:
            self.steps -= 1
            return False, f"Max steps ({self.max_steps}) exceeded at node '{current_node}'"
        self.visited_count[current_node] = self.visited_count.get(current_node, 0) + 1
        return True, None


class NodeExecutor:
    """Invokes one stage and turns every outcome into (delta, failure)."""

    def __init__(self, stage_timeout: Optional[float]):
        self.stage_timeout = stage_timeout

    async def execute(
        self,
        stage: Stage,
        state: StateRecord,
    ) -> tuple[Optional[Mapping[str, Any]], Optional[FailureRecord]]:
        timeout = stage.timeout if stage.timeout is not None else self.stage_timeout
        snapshot = state.snapshot()

        try:
            if timeout is not None:
                result = await asyncio.wait_for(stage.invoke(snapshot), timeout=timeout)
            else:
                result = await stage.invoke(snapshot)
        except asyncio.TimeoutError:
            return None, FailureRecord(
                node=stage.name,
                message=f"Stage '{stage.name}' timed out after {timeout}s",
                cause="TimeoutError",
                kind=FailureKind.TIMEOUT.value,
            )
        except Exception as e:
            return None, FailureRecord.from_exception(stage.name, e)

        if result is None:
            return {}, None
        if isinstance(result, Failure):
            return None, FailureRecord.from_failure(stage.name, result)
        if not isinstance(result, Mapping):
            return None, FailureRecord(
                node=stage.name,
                message=(
                    f"Stage '{stage.name}' returned {type(result).__name__}, "
                    f"expected a mapping or Failure"
                ),
            )

        undeclared = sorted(set(result) - set(stage.writes))
        if undeclared:
            return None, FailureRecord(
                node=stage.name,
                message=(
                    f"Stage '{stage.name}' wrote undeclared output channel(s): "
                    f"{', '.join(undeclared)}"
                ),
            )

        if STATUS in result:
            try:
                status = WorkflowStatus(result[STATUS])
            except ValueError:
                return None, FailureRecord(
                    node=stage.name,
                    message=(
                        f"Stage '{stage.name}' set invalid status {result[STATUS]!r}, "
                        f"expected one of {[s.value for s in WorkflowStatus]}"
                    ),
                )
            result = {**result, STATUS: status.value}
        return result, None


def _restore_failure_records(value: Any) -> list[Any]:
    """Turn serialized failure records (from ``to_dict``) back into FailureRecord."""
    items = value if isinstance(value, (list, tuple)) else [value]
    return [
        FailureRecord.from_dict(item) if isinstance(item, Mapping) and "node" in item else item
        for item in items
    ]


class ExecutionEngine:
    """Drives one run of a compiled workflow."""

    def __init__(
        self,
        compiled: "CompiledWorkflow",
        config: Optional[ExecutionConfig] = None,
        hooks: Sequence[ExecutionHook] = (),
    ):
        self._compiled = compiled
        self._config = config or ExecutionConfig()
        self._hooks = tuple(hooks)
        self._node_executor = NodeExecutor(stage_timeout=self._config.stage_timeout)

    @staticmethod
    def _fail(state: StateRecord, record: FailureRecord) -> StateRecord:
        return state.merge({ERRORS: (record,), STATUS: WorkflowStatus.FAILED.value})

    def _initial_state(self, initial_state: Any) -> StateRecord:
        schema = self._compiled.schema
        if not isinstance(initial_state, Mapping):
            state = StateRecord.initial(schema)
            return self._fail(
                state,
                FailureRecord(
                    node=START,
                    message=f"Initial state must be a mapping, got {type(initial_state).__name__}",
                    kind=FailureKind.INTERNAL_ERROR.value,
                ),
            )

        values = dict(initial_state)
        values[STATUS] = WorkflowStatus.IN_PROGRESS.value
        if ERRORS in values:
            values[ERRORS] = _restore_failure_records(values[ERRORS])
        try:
            return StateRecord.initial(schema, values)
        except UndeclaredChannelError as e:
            declared = {k: v for k, v in values.items() if k in schema}
            return self._fail(
                StateRecord.initial(schema, declared),
                FailureRecord(
                    node=START,
                    message=f"Initial state rejected: {e.message}",
                    kind=FailureKind.INTERNAL_ERROR.value,
                ),
            )

    async def _notify_before(self, node_id: str, state: StateRecord) -> None:
        for hook in self._hooks:
            try:
                await hook.before_node(node_id, state)
            except Exception as e:
                logger.warning(f"Hook before_node failed at '{node_id}': {e}")

    async def _notify_after(
        self,
        node_id: str,
        state: StateRecord,
        failure: Optional[FailureRecord],
    ) -> None:
        for hook in self._hooks:
            try:
                await hook.after_node(node_id, state, failure)
            except Exception as e:
                logger.warning(f"Hook after_node failed at '{node_id}': {e}")

    async def invoke(self, initial_state: Mapping[str, Any]) -> ExecutionResult:
        """Execute the workflow from its entry point.

        Args:
            initial_state: Initial channel values; ``status`` is forced to in_progress

        Returns:
            ExecutionResult with the final state
        """
        start_time = time.time()
        workflow = self._compiled
        counter = StepCounter(self._config.max_steps)
        node_history: list[str] = []

        state = self._initial_state(initial_state)
        current = workflow.entry_point
        logger.debug(f"Starting workflow '{workflow.name}' at '{current}'")

        try:
            while current != END and state.in_progress:
                should_continue, error = counter.should_continue(current)
                if not should_continue:
                    logger.warning(f"Workflow '{workflow.name}': {error}")
                    state = self._fail(
                        state,
                        FailureRecord(
                            node=current,
                            message=error or "Step limit exceeded",
                            kind=FailureKind.INTERNAL_ERROR.value,
                        ),
                    )
                    break

                stage = workflow.nodes[current]
                await self._notify_before(current, state)

                logger.debug(f"Executing stage: {current}")
                node_start = time.time()
                delta, failure = await self._node_executor.execute(stage, state)
                if failure is None and delta:
                    errors_before = len(state.errors)
                    try:
                        state = state.merge(delta)
                    except UndeclaredChannelError as e:
                        failure = FailureRecord(
                            node=current,
                            message=e.message,
                            kind=FailureKind.STAGE_FAILURE.value,
                        )
                    else:
                        # A failed status always carries a record of its own
                        if (
                            state.status == WorkflowStatus.FAILED.value
                            and len(state.errors) == errors_before
                        ):
                            failure = FailureRecord(
                                node=current,
                                message=(
                                    f"Stage '{current}' set status to failed "
                                    f"without a failure record"
                                ),
                                kind=FailureKind.INTERNAL_ERROR.value,
                            )

                if failure is not None:
                    logger.warning(f"Stage '{current}' failed: {failure.message}")
                    state = self._fail(state, failure)
                else:
                    logger.debug(
                        f"Executed stage: {current} ({time.time() - node_start:.3f}s)"
                    )

                node_history.append(current)
                await self._notify_after(current, state, failure)

                try:
                    current = workflow.next_node(current, state)
                except RoutingError as e:
                    logger.error(f"Routing failed after '{current}': {e.message}")
                    state = self._fail(
                        state,
                        FailureRecord(
                            node=current,
                            message=e.message,
                            cause=None if e.cause is None else describe_exception(e.cause),
                            kind=FailureKind.ROUTING_ERROR.value,
                        ),
                    )
                    break

            if current == END and state.in_progress:
                state = state.merge({STATUS: WorkflowStatus.COMPLETED.value})

        except Exception as e:
            logger.error(f"Workflow '{workflow.name}' execution failed: {e}", exc_info=True)
            state = self._fail(
                state,
                FailureRecord.from_exception(current, e, kind=FailureKind.INTERNAL_ERROR),
            )

        duration = time.time() - start_time
        logger.debug(
            f"Workflow '{workflow.name}' finished: status={state.status}, "
            f"steps={counter.steps}, duration={duration:.3f}s"
        )
        return ExecutionResult(
            state=state,
            node_history=node_history,
            steps=counter.steps,
            duration=duration,
        )


async def run(
    compiled: "CompiledWorkflow",
    initial_state: Mapping[str, Any],
    *,
    config: Optional[ExecutionConfig] = None,
    hooks: Sequence[ExecutionHook] = (),
) -> StateRecord:
    """Run ``compiled`` from ``initial_state`` and return the final state."""
    result = await compiled.invoke(initial_state, config=config, hooks=hooks)
    return result.state


__all__ = [
    "ExecutionConfig",
    "ExecutionEngine",
    "ExecutionHook",
    "ExecutionResult",
    "NodeExecutor",
    "StepCounter",
    "TracingHook",
    "START",
    "run",
]
