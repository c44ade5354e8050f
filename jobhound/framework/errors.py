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

"""Error types raised by the workflow framework.

CompileError is the only one a caller normally sees: it is raised by
``StateGraph.compile()`` before any run starts. StageFailure and RoutingError
are contained by the engine and surface as failure records in the ``errors``
channel of the final state.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from jobhound.core.errors import ErrorCategory, JobHoundError


class WorkflowError(JobHoundError):
    """Base class for workflow framework errors."""


class CompileError(WorkflowError):
    """Structural defects found while compiling a graph.

    Attributes:
        violations: Every problem found, in discovery order
    """

    def __init__(self, violations: Iterable[str], **kwargs: Any) -> None:
        self.violations = list(violations)
        count = len(self.violations)
        summary = f"Invalid graph ({count} violation{'s' if count != 1 else ''}): "
        super().__init__(
            summary + "; ".join(self.violations),
            category=ErrorCategory.GRAPH_INVALID,
            details={"violations": self.violations},
            **kwargs,
        )


class UndeclaredChannelError(WorkflowError):
    """A state key was used that the schema does not declare."""

    def __init__(self, channels: Iterable[str], **kwargs: Any) -> None:
        self.channels = sorted(channels)
        super().__init__(
            f"Undeclared channel(s): {', '.join(self.channels)}",
            category=ErrorCategory.STATE_INVALID,
            details={"channels": self.channels},
            **kwargs,
        )


class StageFailure(WorkflowError):
    """A stage's external collaborator failed.

    Stage adapters may raise this internally; the engine converts it (and any
    other exception escaping a handler) into a failure record.
    """

    def __init__(
        self,
        message: str,
        *,
        node: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, category=ErrorCategory.STAGE_FAILURE, cause=cause, **kwargs)
        self.node = node
        self.details["node"] = node


class RoutingError(WorkflowError):
    """No edge resolved from a node after its step was merged."""

    def __init__(
        self,
        message: str,
        *,
        node: str,
        branch: Any = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, category=ErrorCategory.ROUTING, cause=cause)
        self.node = node
        self.branch = branch
        self.details.update({"node": node, "branch": branch})


__all__ = [
    "WorkflowError",
    "CompileError",
    "UndeclaredChannelError",
    "StageFailure",
    "RoutingError",
]
