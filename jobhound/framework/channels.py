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

"""Channel declarations for workflow state.

Every field of the state record is a channel with a declared merge policy.
The schema is fixed before a graph is compiled, so a stage that names an
unknown channel is rejected at build time instead of surprising a run.

Example:
    from jobhound.framework.channels import StateSchema

    schema = StateSchema.build(
        overwrite=["job_scout_results"],
        append=["history"],
    )
    schema.policy_of("history")  # MergePolicy.APPEND
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional


class MergePolicy(str, Enum):
    """How a delta value is combined with the current channel value.

    Attributes:
        OVERWRITE: New value replaces the old one
        APPEND: New value(s) are concatenated to an ordered sequence
    """

    OVERWRITE = "overwrite"
    APPEND = "append"


class WorkflowStatus(str, Enum):
    """Values of the ``status`` channel."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


STATUS = "status"
ERRORS = "errors"
USER_ID = "user_id"
COMMAND = "command"
PARAMETERS = "parameters"


@dataclass(frozen=True)
class Channel:
    """A named state field and its merge policy.

    Attributes:
        name: Channel name (key in the state record)
        policy: Merge policy applied to deltas
        default: Initial value when the initial state omits the channel
        description: Free-form documentation
    """

    name: str
    policy: MergePolicy = MergePolicy.OVERWRITE
    default: Any = None
    description: str = ""

    def initial_value(self) -> Any:
        if self.policy is MergePolicy.APPEND:
            return self.merge((), self.default) if self.default is not None else ()
        return copy.deepcopy(self.default)

    def merge(self, current: Any, update: Any) -> Any:
        """Combine ``update`` with ``current`` according to the policy."""
        if self.policy is MergePolicy.OVERWRITE:
            return update
        if isinstance(update, (list, tuple)):
            items = tuple(update)
        else:
            items = (update,)
        return tuple(current or ()) + items


BASE_CHANNELS: tuple[Channel, ...] = (
    Channel(USER_ID, description="Identifier of the user the run acts for"),
    Channel(COMMAND, description="Command that started the run"),
    Channel(PARAMETERS, default={}, description="Command parameters"),
    Channel(
        STATUS,
        default=WorkflowStatus.IN_PROGRESS.value,
        description="Run status: in_progress, completed or failed",
    ),
    Channel(ERRORS, MergePolicy.APPEND, description="Failure records, in order"),
)


class StateSchema:
    """Immutable, ordered set of declared channels.

    The base channels (``user_id``, ``command``, ``parameters``, ``status``
    and ``errors``) are always present. Redeclaring a channel with the same
    policy replaces its default/description; a conflicting policy is rejected.
    """

    __slots__ = ("_channels",)

    def __init__(self, channels: Iterable[Channel] = ()):
        merged: dict[str, Channel] = {c.name: c for c in BASE_CHANNELS}
        for channel in channels:
            existing = merged.get(channel.name)
            if existing is not None and existing.policy is not channel.policy:
                raise ValueError(
                    f"Channel '{channel.name}' declared as {channel.policy.value}, "
                    f"already {existing.policy.value}"
                )
            merged[channel.name] = channel
        self._channels: Mapping[str, Channel] = MappingProxyType(merged)

    @classmethod
    def build(
        cls,
        overwrite: Iterable[str] = (),
        append: Iterable[str] = (),
    ) -> "StateSchema":
        """Create a schema from channel names grouped by policy."""
        channels = [Channel(name) for name in overwrite]
        channels.extend(Channel(name, MergePolicy.APPEND) for name in append)
        return cls(channels)

    def with_channels(self, *channels: Channel) -> "StateSchema":
        """Return a new schema extended with ``channels``."""
        return StateSchema([*self._channels.values(), *channels])

    def __contains__(self, name: object) -> bool:
        return name in self._channels

    def __iter__(self) -> Iterator[Channel]:
        return iter(self._channels.values())

    def __len__(self) -> int:
        return len(self._channels)

    def __getitem__(self, name: str) -> Channel:
        return self._channels[name]

    def get(self, name: str) -> Optional[Channel]:
        return self._channels.get(name)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._channels)

    def policy_of(self, name: str) -> MergePolicy:
        return self._channels[name].policy

    def undeclared(self, names: Iterable[str]) -> list[str]:
        """Return the names not declared in this schema, in input order."""
        return [name for name in names if name not in self._channels]

    def describe(self) -> dict[str, str]:
        return {name: channel.policy.value for name, channel in self._channels.items()}

    def __repr__(self) -> str:
        return f"StateSchema({self.describe()})"


__all__ = [
    "MergePolicy",
    "WorkflowStatus",
    "Channel",
    "StateSchema",
    "BASE_CHANNELS",
    "STATUS",
    "ERRORS",
    "USER_ID",
    "COMMAND",
    "PARAMETERS",
]
