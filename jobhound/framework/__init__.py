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

"""Workflow framework: stages wired into a graph over a shared state record.

Example:
    from jobhound.framework import END, StateGraph, StateSchema

    graph = StateGraph(StateSchema.build(overwrite=["x"]))
    graph.add_node("a", lambda s: {"x": 1}, writes=["x"])
    graph.add_edge("a", END)
    graph.set_entry_point("a")

    final_state = graph.compile().run_sync({"user_id": "u-1"})
"""

from jobhound.framework.channels import (
    Channel,
    MergePolicy,
    StateSchema,
    WorkflowStatus,
)
from jobhound.framework.errors import (
    CompileError,
    RoutingError,
    StageFailure,
    UndeclaredChannelError,
    WorkflowError,
)
from jobhound.framework.executor import (
    ExecutionConfig,
    ExecutionEngine,
    ExecutionHook,
    ExecutionResult,
    TracingHook,
    run,
)
from jobhound.framework.graph import END, CompiledWorkflow, Edge, EdgeType, StateGraph
from jobhound.framework.graph_cache import CompiledWorkflowCache, CompiledWorkflowCacheConfig
from jobhound.framework.stage import (
    Failure,
    FailureKind,
    FailureRecord,
    Stage,
    collaborator_stage,
)
from jobhound.framework.state import StateRecord

__all__ = [
    # Graph
    "StateGraph",
    "CompiledWorkflow",
    "Edge",
    "EdgeType",
    "END",
    # State
    "Channel",
    "MergePolicy",
    "StateSchema",
    "StateRecord",
    "WorkflowStatus",
    # Stages
    "Stage",
    "Failure",
    "FailureKind",
    "FailureRecord",
    "collaborator_stage",
    # Execution
    "ExecutionConfig",
    "ExecutionEngine",
    "ExecutionHook",
    "ExecutionResult",
    "TracingHook",
    "run",
    # Caching
    "CompiledWorkflowCache",
    "CompiledWorkflowCacheConfig",
    # Errors
    "WorkflowError",
    "CompileError",
    "RoutingError",
    "StageFailure",
    "UndeclaredChannelError",
]
