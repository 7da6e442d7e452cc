"""Host-owned bibliographic records, read-only from the table's perspective."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

PDF_CONTENT_TYPE = "application/pdf"


@dataclass(frozen=True)
class Paper:
    """A bibliographic record in the host repository (one table row)."""

    id: str
    title: str = ""
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    note_ids: List[str] = field(default_factory=list)
    attachment_ids: List[str] = field(default_factory=list)

    @property
    def author_label(self) -> str:
        return ", ".join(a for a in self.authors if a) or "Unknown"


@dataclass(frozen=True)
class Attachment:
    """A file attached to a paper."""

    id: str
    parent_id: Optional[str] = None
    title: str = ""
    filename: str = ""
    content_type: str = ""

    @property
    def is_pdf(self) -> bool:
        if (self.content_type or "").lower() == PDF_CONTENT_TYPE:
            return True
        name = (self.filename or "").lower()
        if name.startswith("storage:"):
            name = name[len("storage:"):]
        return name.endswith(".pdf")
