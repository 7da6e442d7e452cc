"""HostRepositoryPort: item/attachment/note access in the host library."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from papertable.domain.paper import Attachment, Paper


@runtime_checkable
class HostRepositoryPort(Protocol):
    """Content-addressable view of the host reference manager's library."""

    def get_item(self, item_id: str) -> Optional[Paper]: ...

    def get_items_by_tag(self, tag: str) -> List[str]:
        """Ids of the top-level items carrying ``tag``."""
        ...

    def get_attachments(self, item_id: str) -> List[str]: ...

    def get_attachment(self, attachment_id: str) -> Optional[Attachment]: ...

    def get_attachment_file(self, attachment_id: str) -> Optional[Path]:
        """Return a local path to the attachment's file, downloading it if needed."""
        ...

    def get_notes(self, item_id: str) -> List[str]: ...

    def read_note_text(self, note_id: str) -> str:
        """Return the note body as stored (HTML)."""
        ...

    def create_note(self, parent_id: str, html: str) -> str: ...

    def update_note(self, note_id: str, html: str) -> None: ...
