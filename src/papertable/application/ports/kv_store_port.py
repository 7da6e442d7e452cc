"""KeyValuePort: generic JSON key-value persistence."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class KeyValuePort(Protocol):
    def get(self, key: str) -> Any:
        """Return the stored JSON value, or None when absent."""
        ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool:
        """Remove ``key``; False when it was not stored."""
        ...
