# src/papertable/application/services/source_resolver.py
"""
Source material resolution for table cells.

A paper is generated from its notes when it has any non-empty ones,
otherwise from its first PDF attachment (after OCR turns it into a note),
otherwise not at all.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from papertable.application.ports.host_repository_port import HostRepositoryPort
from papertable.application.ports.ocr_port import OcrPort
from papertable.domain.errors import ConfigurationError, ExtractionError, SourceUnavailable
from papertable.domain.paper import Attachment, Paper
from papertable.domain.source import (
    UNTITLED_OCR_HEADING,
    ResolvedSource,
    build_ocr_note,
    has_ocr_marker,
    strip_html,
)
from papertable.domain.table import SourceKind
from papertable.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)


class SourceResolver:
    """
    Decide what a paper can be generated from, running OCR on demand.

    ``resolve`` only reads from the host repository. ``resolve_and_materialize``
    may run OCR and create a note; concurrent calls for the same paper share
    one OCR run, and the number of simultaneous OCR requests is bounded.
    """

    def __init__(
        self,
        repository: HostRepositoryPort,
        ocr: Optional[OcrPort] = None,
        *,
        ocr_max_concurrent: int = 5,
    ):
        self._repository = repository
        self._ocr = ocr
        self._ocr_semaphore = asyncio.Semaphore(max(1, int(ocr_max_concurrent)))
        self._inflight: Dict[str, "asyncio.Future[str]"] = {}
        self.ocr_runs = 0

    def preflight_ocr(self) -> None:
        """Raise ConfigurationError if a PDF could not be converted right now."""
        if self._ocr is None:
            raise ConfigurationError("No OCR backend is configured")
        self._ocr.preflight()

    def resolve(self, paper: Paper) -> ResolvedSource:
        note_text = self.read_notes(paper)
        if note_text:
            return ResolvedSource.notes(note_text)

        attachment = self.first_pdf(paper)
        if attachment is not None:
            return ResolvedSource.pdf(attachment)
        return ResolvedSource.none()

    def read_notes(self, paper: Paper) -> str:
        """Plain text of every non-empty note, newline separated."""
        bodies: List[str] = []
        for note_id in self._repository.get_notes(paper.id):
            text = strip_html(self._repository.read_note_text(note_id))
            if text:
                bodies.append(text)
        return "\n".join(bodies)

    def first_pdf(self, paper: Paper) -> Optional[Attachment]:
        for attachment_id in self._repository.get_attachments(paper.id):
            attachment = self._repository.get_attachment(attachment_id)
            if attachment is not None and attachment.is_pdf:
                return attachment
        return None

    async def resolve_and_materialize(self, paper: Paper) -> ResolvedSource:
        source = await asyncio.to_thread(self.resolve, paper)
        if source.kind != SourceKind.PDF:
            return source

        await self.materialize(paper, source.attachment)
        refreshed = await asyncio.to_thread(self.resolve, paper)
        if refreshed.kind != SourceKind.NOTES:
            raise ExtractionError(f"OCR note for '{paper.title}' has no readable text")
        return refreshed

    async def materialize(self, paper: Paper, attachment: Optional[Attachment] = None) -> str:
        """
        Make sure an OCR note exists for ``paper`` and return its id.

        Reuses a note that already carries the paper's OCR marker. Only
        overlapping calls share a run; once it settles the next call looks
        at the repository again, so a deleted note is rebuilt.
        """
        pending = self._inflight.get(paper.id)
        if pending is None:
            pending = asyncio.ensure_future(self._materialize(paper, attachment))
            self._inflight[paper.id] = pending
            pending.add_done_callback(lambda fut, pid=paper.id: self._forget(pid, fut))
        return await asyncio.shield(pending)

    def _forget(self, paper_id: str, future: "asyncio.Future[str]") -> None:
        if self._inflight.get(paper_id) is future:
            del self._inflight[paper_id]

    async def _materialize(self, paper: Paper, attachment: Optional[Attachment]) -> str:
        existing = await asyncio.to_thread(self.find_ocr_note, paper)
        if existing:
            logger.info(f"Reusing OCR note {existing} for paper {paper.id}")
            return existing

        if attachment is None:
            attachment = await asyncio.to_thread(self.first_pdf, paper)
        if attachment is None:
            raise SourceUnavailable(f"Paper {paper.id} has no PDF attachment")
        if self._ocr is None:
            raise ConfigurationError("No OCR backend is configured")

        path = await asyncio.to_thread(self._repository.get_attachment_file, attachment.id)
        if path is None:
            raise ExtractionError(f"PDF file for attachment {attachment.id} is not available")

        async with self._ocr_semaphore:
            self.ocr_runs += 1
            Logger.info(f"OCR start paper={paper.id} attachment={attachment.id}", file=LogFiles.OCR)
            try:
                markdown = await self._ocr.extract_to_markdown(path)
            except (ExtractionError, ConfigurationError) as exc:
                Logger.error(f"OCR failed paper={paper.id}: {exc}", file=LogFiles.OCR)
                raise
            except Exception as exc:
                Logger.error(f"OCR failed paper={paper.id}: {exc}", file=LogFiles.OCR)
                raise ExtractionError(f"OCR failed: {exc}") from exc

        note_html = build_ocr_note(paper.title, markdown)
        note_id = await asyncio.to_thread(self._repository.create_note, paper.id, note_html)
        Logger.info(
            f"OCR done paper={paper.id} note={note_id} chars={len(markdown)}",
            file=LogFiles.OCR,
        )
        return note_id

    def find_ocr_note(self, paper: Paper) -> Optional[str]:
        for note_id in self._repository.get_notes(paper.id):
            if has_ocr_marker(
                self._repository.read_note_text(note_id), paper.title or UNTITLED_OCR_HEADING
            ):
                return note_id
        return None
