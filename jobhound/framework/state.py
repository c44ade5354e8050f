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

"""Immutable state record flowing through a workflow run.

A ``StateRecord`` is a read-only mapping bound to a ``StateSchema``. Merging
a delta never touches the existing record; it returns a new one, so anything
still holding an older record keeps seeing a consistent snapshot.
"""

from __future__ import annotations

import copy
from typing import Any, Iterator, Mapping, Optional

from jobhound.framework.channels import (
    ERRORS,
    STATUS,
    MergePolicy,
    StateSchema,
    WorkflowStatus,
)
from jobhound.framework.errors import UndeclaredChannelError


def _to_plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, tuple):
        return [_to_plain(item) for item in value]
    return value


class StateRecord(Mapping[str, Any]):
    """Read-only snapshot of workflow state.

    Append channels are stored as tuples. Use ``to_dict()`` for a plain,
    serializable copy.
    """

    __slots__ = ("_schema", "_values")

    def __init__(self, schema: StateSchema, values: Mapping[str, Any]):
        self._schema = schema
        self._values: dict[str, Any] = dict(values)

    @classmethod
    def initial(
        cls,
        schema: StateSchema,
        values: Optional[Mapping[str, Any]] = None,
    ) -> "StateRecord":
        """Build a record with every channel set, defaults filling the gaps.

        Raises:
            UndeclaredChannelError: If ``values`` has keys outside the schema
        """
        values = dict(values or {})
        undeclared = schema.undeclared(values)
        if undeclared:
            raise UndeclaredChannelError(undeclared)

        data: dict[str, Any] = {}
        for channel in schema:
            if channel.name not in values:
                data[channel.name] = channel.initial_value()
            elif channel.policy is MergePolicy.APPEND:
                data[channel.name] = channel.merge((), values[channel.name])
            else:
                data[channel.name] = values[channel.name]
        return cls(schema, data)

    @property
    def schema(self) -> StateSchema:
        return self._schema

    def merge(self, delta: Mapping[str, Any]) -> "StateRecord":
        """Return a new record with ``delta`` merged per channel policy.

        Raises:
            UndeclaredChannelError: If ``delta`` names an undeclared channel
        """
        undeclared = self._schema.undeclared(delta)
        if undeclared:
            raise UndeclaredChannelError(undeclared)

        data = dict(self._values)
        for name, value in delta.items():
            data[name] = self._schema[name].merge(data.get(name), value)
        return StateRecord(self._schema, data)

    def snapshot(self) -> "StateRecord":
        """Deep copy handed to stage handlers."""
        return StateRecord(self._schema, copy.deepcopy(self._values))

    @property
    def status(self) -> Any:
        return self._values.get(STATUS)

    @property
    def errors(self) -> tuple[Any, ...]:
        return tuple(self._values.get(ERRORS) or ())

    @property
    def in_progress(self) -> bool:
        return self.status == WorkflowStatus.IN_PROGRESS.value

    def to_dict(self) -> dict[str, Any]:
        return {name: _to_plain(value) for name, value in self._values.items()}

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"StateRecord(status={self.status!r}, channels={list(self._values)})"


__all__ = ["StateRecord"]
