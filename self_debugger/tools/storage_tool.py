"""Collects structured values an agent hands back through a tool call."""

from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar('T')


class StorageTool(Generic[T]):
    """
    Buffer behind a ``store_*`` agent tool.

    The agent never returns free text to the engine; it calls the store tool
    with a fixed schema and the engine reads the buffer afterwards.
    """

    def __init__(self, label: str = "value"):
        self.label = label
        self._values: List[T] = []

    def store(self, value: T) -> dict[str, Any]:
        """Append a value and return an MCP tool response."""
        self._values.append(value)
        return {
            "content": [{
                "type": "text",
                "text": f"Stored {self.label} #{len(self._values)}"
            }]
        }

    @property
    def values(self) -> List[T]:
        return self._values.copy()

    @property
    def latest(self) -> Optional[T]:
        """Most recent value; agents may revise an answer by storing again."""
        return self._values[-1] if self._values else None

    def clear(self):
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)
