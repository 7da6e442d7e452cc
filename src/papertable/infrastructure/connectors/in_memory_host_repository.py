from __future__ import annotations

import itertools
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

from papertable.domain.paper import Attachment, Paper


class InMemoryHostRepository:
    """Process-local host library. Notes created here show up on the parent paper."""

    def __init__(self) -> None:
        self._papers: Dict[str, Paper] = {}
        self._attachments: Dict[str, Attachment] = {}
        self._files: Dict[str, Path] = {}
        self._notes: Dict[str, str] = {}
        self._note_ids: Dict[str, List[str]] = {}
        self._tags: Dict[str, List[str]] = {}
        self._ids = itertools.count(1)
        self.created_notes: List[str] = []

    def add_paper(
        self,
        paper_id: str,
        title: str = "",
        *,
        authors: Optional[List[str]] = None,
        year: Optional[int] = None,
        notes: Optional[List[str]] = None,
        attachments: Optional[List[Attachment]] = None,
        tags: Optional[List[str]] = None,
    ) -> Paper:
        paper = Paper(id=paper_id, title=title, authors=list(authors or []), year=year)
        self._papers[paper_id] = paper
        self._note_ids[paper_id] = []
        for html in notes or []:
            note_id = f"note-{next(self._ids)}"
            self._notes[note_id] = html
            self._note_ids[paper_id].append(note_id)
        for attachment in attachments or []:
            self.add_attachment(paper_id, attachment)
        self._tags[paper_id] = list(tags or [])
        return self.get_item(paper_id)

    def add_attachment(self, paper_id: str, attachment: Attachment, path: Optional[Path] = None) -> None:
        paper = self._papers[paper_id]
        self._attachments[attachment.id] = replace(attachment, parent_id=paper_id)
        self._papers[paper_id] = replace(
            paper, attachment_ids=[*paper.attachment_ids, attachment.id]
        )
        if path is not None:
            self._files[attachment.id] = path

    def get_item(self, item_id: str) -> Optional[Paper]:
        paper = self._papers.get(item_id)
        if paper is None:
            return None
        return replace(paper, note_ids=list(self._note_ids.get(item_id, [])))

    def get_attachments(self, item_id: str) -> List[str]:
        paper = self._papers.get(item_id)
        return list(paper.attachment_ids) if paper else []

    def get_attachment(self, attachment_id: str) -> Optional[Attachment]:
        return self._attachments.get(attachment_id)

    def get_attachment_file(self, attachment_id: str) -> Optional[Path]:
        if attachment_id in self._files:
            return self._files[attachment_id]
        if attachment_id in self._attachments:
            return Path(f"{attachment_id}.pdf")
        return None

    def get_notes(self, item_id: str) -> List[str]:
        return list(self._note_ids.get(item_id, []))

    def read_note_text(self, note_id: str) -> str:
        return self._notes.get(note_id, "")

    def create_note(self, parent_id: str, html: str) -> str:
        if parent_id not in self._papers:
            raise KeyError(f"Unknown parent item: {parent_id}")
        note_id = f"note-{next(self._ids)}"
        self._notes[note_id] = html
        self._note_ids[parent_id].append(note_id)
        self.created_notes.append(note_id)
        return note_id

    def update_note(self, note_id: str, html: str) -> None:
        if note_id not in self._notes:
            raise KeyError(f"Unknown note: {note_id}")
        self._notes[note_id] = html

    def delete_note(self, note_id: str) -> None:
        if self._notes.pop(note_id, None) is None:
            raise KeyError(f"Unknown note: {note_id}")
        for note_ids in self._note_ids.values():
            if note_id in note_ids:
                note_ids.remove(note_id)

    def get_items_by_tag(self, tag: str) -> List[str]:
        wanted = (tag or "").strip().lower()
        return [
            paper_id
            for paper_id, tags in self._tags.items()
            if any(t.strip().lower() == wanted for t in tags)
        ]
