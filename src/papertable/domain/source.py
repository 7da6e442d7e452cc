"""Source material resolution results and OCR note formatting."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

from papertable.domain.paper import Attachment
from papertable.domain.table import SourceKind

OCR_NOTE_BODY_STYLE = "white-space: pre-wrap;"
UNTITLED_OCR_HEADING = "Extracted Text"


@dataclass(frozen=True)
class ResolvedSource:
    """What a paper can be generated from: note text, a PDF, or nothing."""

    kind: SourceKind
    text: str = ""
    attachment: Optional[Attachment] = None

    @classmethod
    def notes(cls, text: str) -> "ResolvedSource":
        return cls(kind=SourceKind.NOTES, text=text)

    @classmethod
    def pdf(cls, attachment: Attachment) -> "ResolvedSource":
        return cls(kind=SourceKind.PDF, attachment=attachment)

    @classmethod
    def none(cls) -> "ResolvedSource":
        return cls(kind=SourceKind.NONE)

    @property
    def available(self) -> bool:
        return self.kind != SourceKind.NONE


def strip_html(markup: str) -> str:
    """Plain text of a note body."""
    if not markup:
        return ""
    text = BeautifulSoup(markup, "html.parser").get_text()
    return text.strip()


def ocr_marker(title: str) -> str:
    """Heading that marks a note as the OCR output for a paper titled ``title``."""
    return f"<h1>{html.escape(title or '', quote=True)}</h1>"


def build_ocr_note(title: str, markdown: str) -> str:
    heading = ocr_marker(title or UNTITLED_OCR_HEADING)
    body = html.escape(markdown or "", quote=True)
    return f'{heading}<pre style="{OCR_NOTE_BODY_STYLE}">{body}</pre>'


def has_ocr_marker(note_html: str, title: str) -> bool:
    if not title or not note_html:
        return False
    return ocr_marker(title) in note_html
