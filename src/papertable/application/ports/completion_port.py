"""CompletionBackendPort: chat-completion backend contract."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

from papertable.domain.model_config import ModelConfig


@dataclass
class StreamCallbacks:
    on_token: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


@runtime_checkable
class CompletionBackendPort(Protocol):
    async def complete(self, system: str, user: str, model: ModelConfig) -> str:
        """Return the full completion text (may be empty)."""
        ...

    async def complete_stream(
        self,
        system: str,
        user: str,
        model: ModelConfig,
        callbacks: StreamCallbacks,
    ) -> str:
        """Stream tokens through ``callbacks`` and return the full text."""
        ...

    async def close(self) -> None: ...
