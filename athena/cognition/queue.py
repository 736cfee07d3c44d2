"""FIFO buffers drained with the snapshot-and-diff pattern."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class QueueItem:
    """A domain event or the result (or error) of a dispatched tool call."""

    is_tool_result: bool
    name: str
    args: Any = field(default_factory=dict)
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_result": self.is_tool_result,
            "name": self.name,
            "id": self.correlation_id,
            "args": self.args,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        return cls(
            is_tool_result=bool(data.get("tool_result", False)),
            name=str(data.get("name", "")),
            args=data.get("args", {}),
            correlation_id=data.get("id"),
        )


class SnapshotQueue(Generic[T]):
    """Append-only buffer that is consumed by removing an exact prefix.

    A consumer records ``peek_length()`` before starting slow work and later
    calls ``remove_prefix`` with that number, so items appended meanwhile are
    neither lost nor processed twice.
    """

    def __init__(self, items: Optional[List[T]] = None) -> None:
        self._items: List[T] = list(items or [])
        self.removed_total = 0

    def enqueue_tail(self, item: T) -> None:
        self._items.append(item)

    def peek_length(self) -> int:
        return len(self._items)

    def peek(self, count: Optional[int] = None) -> List[T]:
        if count is None:
            return list(self._items)
        return self._items[:count]

    def remove_prefix(self, count: int) -> List[T]:
        if count < 0 or count > len(self._items):
            raise ValueError(
                f"Cannot remove {count} item(s) from a queue of {len(self._items)}."
            )
        removed = self._items[:count]
        del self._items[:count]
        self.removed_total += count
        return removed

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))


__all__ = ["QueueItem", "SnapshotQueue"]
