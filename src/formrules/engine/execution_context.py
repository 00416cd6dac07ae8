"""
Execution context for one change cycle.

Built fresh for every change (never cached or reused across cycles) and
passed read-only to trigger resolution, condition evaluation, operand
resolution and effect application. Folding rules over a batch derives a new
context per step with `with_state()`.
"""

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any


def _freeze(state: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(state)))


@dataclass(frozen=True)
class ExecutionContext:
    """
    Immutable snapshot handed to everything that runs during one cycle.

    Attributes:
        state: Read-only copy of the form state this step works from
        changed_field: Field path whose edit started the cycle
        changed_value: New value of the changed field
        execution_id: Monotonically increasing id of the cycle
        timestamp: When the cycle started (UTC)
        depth: Cascade hop (0 for the direct triggers of the edit)
    """

    state: Mapping[str, Any]
    changed_field: str | None = None
    changed_value: Any = None
    execution_id: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    depth: int = 0

    @classmethod
    def create(
        cls,
        state: Mapping[str, Any],
        changed_field: str | None = None,
        changed_value: Any = None,
        execution_id: int = 0,
        depth: int = 0,
    ) -> "ExecutionContext":
        """Create a context over a frozen copy of `state`."""
        return cls(
            state=_freeze(state),
            changed_field=changed_field,
            changed_value=changed_value,
            execution_id=execution_id,
            depth=depth,
        )

    def with_state(self, state: Mapping[str, Any]) -> "ExecutionContext":
        """Same cycle, newer state (next fold step)."""
        return replace(self, state=_freeze(state))

    def with_depth(self, depth: int) -> "ExecutionContext":
        return replace(self, depth=depth)
