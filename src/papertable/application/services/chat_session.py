# src/papertable/application/services/chat_session.py
"""
Research chat over the host library.

The user picks papers, single notes or whole tags as context; their
metadata and note text become the system prompt. Replies stream token by
token and can be stopped halfway, keeping whatever text already arrived.
Messages and the selected context are kept per conversation in the
key-value store.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from papertable.application.ports.completion_port import StreamCallbacks
from papertable.application.ports.host_repository_port import HostRepositoryPort
from papertable.application.ports.kv_store_port import KeyValuePort
from papertable.application.prompts import CHAT_ASSISTANT, PromptRegistry
from papertable.application.prompts.chat import EMPTY_CONTEXT, HISTORY_HEADER
from papertable.application.services.llm_service import LLMService
from papertable.domain.errors import PaperTableError
from papertable.domain.paper import Paper
from papertable.domain.source import strip_html

logger = logging.getLogger(__name__)

DEFAULT_CONVERSATION = "default"
DEFAULT_MAX_CONTEXT_CHARS = 50000
DEFAULT_MAX_HISTORY_MESSAGES = 20
_KEY_PREFIX = "papertable.chat"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContextKind(str, Enum):
    PAPER = "paper"
    NOTE = "note"
    TAG = "tag"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


@dataclass(frozen=True)
class ContextItem:
    """One selected paper, note or tag."""

    kind: ContextKind
    id: str
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "id": self.id, "label": self.label}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextItem":
        return cls(
            kind=ContextKind(str(data.get("kind") or "paper")),
            id=str(data.get("id") or ""),
            label=str(data.get("label") or ""),
        )


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=_utcnow_iso)
    stopped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "stopped": self.stopped,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            role=MessageRole(str(data.get("role") or "user")),
            content=str(data.get("content") or ""),
            id=str(data.get("id") or uuid.uuid4().hex),
            timestamp=str(data.get("timestamp") or _utcnow_iso()),
            stopped=bool(data.get("stopped", False)),
        )


class ChatMessageStore:
    """Per-conversation message log and context selection over a KeyValuePort."""

    def __init__(self, kv: KeyValuePort):
        self._kv = kv

    @staticmethod
    def _messages_key(conversation_id: str) -> str:
        return f"{_KEY_PREFIX}.{conversation_id}.messages"

    @staticmethod
    def _context_key(conversation_id: str) -> str:
        return f"{_KEY_PREFIX}.{conversation_id}.context"

    def load_messages(self, conversation_id: str) -> List[ChatMessage]:
        raw = self._kv.get(self._messages_key(conversation_id))
        if not isinstance(raw, list):
            return []
        messages: List[ChatMessage] = []
        for row in raw:
            if not isinstance(row, dict):
                continue
            try:
                messages.append(ChatMessage.from_dict(row))
            except ValueError:
                logger.warning(f"Skipping malformed chat message in {conversation_id}: {row!r}")
        return messages

    def append_message(self, conversation_id: str, message: ChatMessage) -> None:
        messages = self.load_messages(conversation_id)
        messages.append(message)
        self._kv.set(self._messages_key(conversation_id), [m.to_dict() for m in messages])

    def load_context(self, conversation_id: str) -> List[ContextItem]:
        raw = self._kv.get(self._context_key(conversation_id))
        if not isinstance(raw, list):
            return []
        items: List[ContextItem] = []
        for row in raw:
            if isinstance(row, dict):
                try:
                    items.append(ContextItem.from_dict(row))
                except ValueError:
                    logger.warning(f"Skipping unknown context item: {row!r}")
        return items

    def save_context(self, conversation_id: str, items: List[ContextItem]) -> None:
        self._kv.set(self._context_key(conversation_id), [item.to_dict() for item in items])

    def clear(self, conversation_id: str) -> None:
        self._kv.delete(self._messages_key(conversation_id))
        self._kv.delete(self._context_key(conversation_id))


def describe_paper(paper: Paper) -> str:
    line = f"--- {paper.title or 'Untitled'} ---"
    if paper.year:
        line += f" ({paper.year})"
    if paper.authors:
        line += f"\nAuthors: {', '.join(paper.authors)}"
    return line


def build_context(
    repository: HostRepositoryPort,
    items: List[ContextItem],
    *,
    max_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
) -> str:
    """
    Render the selected items as prompt text.

    Tags expand to the papers carrying them. A paper shows its metadata
    followed by the text of its notes; a paper reached twice is shown once.
    The result is cut at ``max_chars``.
    """
    paper_ids: List[str] = []
    note_ids: List[str] = []
    for item in items:
        if item.kind == ContextKind.PAPER:
            paper_ids.append(item.id)
        elif item.kind == ContextKind.TAG:
            paper_ids.extend(repository.get_items_by_tag(item.id))
        elif item.kind == ContextKind.NOTE:
            note_ids.append(item.id)

    sections: List[str] = []
    papers: List[str] = []
    for paper_id in dict.fromkeys(paper_ids):
        paper = repository.get_item(paper_id)
        if paper is None:
            logger.warning(f"Chat context paper {paper_id} no longer exists")
            continue
        block = describe_paper(paper)
        notes = [strip_html(repository.read_note_text(n)) for n in repository.get_notes(paper.id)]
        notes = [text for text in notes if text]
        if notes:
            block += "\nNotes:\n" + "\n".join(notes)
        papers.append(block)
    if papers:
        sections.append("=== Selected Papers ===\n" + "\n\n".join(papers))

    labels = {item.id: item.label for item in items if item.kind == ContextKind.NOTE}
    notes = []
    for note_id in dict.fromkeys(note_ids):
        text = strip_html(repository.read_note_text(note_id))
        if text:
            notes.append(f"--- {labels.get(note_id) or note_id} ---\n{text}")
    if notes:
        sections.append("=== Notes ===\n" + "\n\n".join(notes))

    context = "\n\n".join(sections) or EMPTY_CONTEXT
    return context[: max(1, int(max_chars))]


def render_history(messages: List[ChatMessage]) -> str:
    lines = []
    for message in messages:
        if message.role == MessageRole.ERROR or not message.content:
            continue
        speaker = "User" if message.role == MessageRole.USER else "Assistant"
        lines.append(f"{speaker}: {message.content}")
    if not lines:
        return ""
    return HISTORY_HEADER + "\n".join(lines) + "\n\nUser: "


class ChatSession:
    """
    One conversation with the active model.

    Only one reply streams at a time. ``stop()`` ends the current reply;
    the text received so far is stored as a stopped assistant message.
    """

    def __init__(
        self,
        llm: LLMService,
        repository: HostRepositoryPort,
        store: ChatMessageStore,
        *,
        conversation_id: str = DEFAULT_CONVERSATION,
        prompt_registry: Optional[PromptRegistry] = None,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
        max_history_messages: int = DEFAULT_MAX_HISTORY_MESSAGES,
    ):
        self._llm = llm
        self._repository = repository
        self._store = store
        self._prompts = prompt_registry or PromptRegistry()
        self.conversation_id = conversation_id
        self.max_context_chars = max_context_chars
        self.max_history_messages = max(0, int(max_history_messages))
        self._context: List[ContextItem] = store.load_context(conversation_id)
        self._reply: Optional["asyncio.Future[str]"] = None
        self._stop_requested = False

    # -- context -------------------------------------------------------

    @property
    def context(self) -> List[ContextItem]:
        return list(self._context)

    def add_context(self, kind: ContextKind, item_id: str, label: str = "") -> bool:
        """Select an item; selecting it twice is a no-op."""
        kind = ContextKind(kind)
        if any(i.kind == kind and i.id == item_id for i in self._context):
            return False
        self._context.append(ContextItem(kind=kind, id=item_id, label=label))
        self._store.save_context(self.conversation_id, self._context)
        return True

    def remove_context(self, kind: ContextKind, item_id: str) -> bool:
        kind = ContextKind(kind)
        remaining = [i for i in self._context if not (i.kind == kind and i.id == item_id)]
        if len(remaining) == len(self._context):
            return False
        self._context = remaining
        self._store.save_context(self.conversation_id, self._context)
        return True

    def clear_context(self) -> None:
        self._context = []
        self._store.save_context(self.conversation_id, self._context)

    # -- messages ------------------------------------------------------

    def history(self) -> List[ChatMessage]:
        return self._store.load_messages(self.conversation_id)

    def clear(self) -> None:
        self._store.clear(self.conversation_id)
        self._context = []

    @property
    def is_streaming(self) -> bool:
        return self._reply is not None and not self._reply.done()

    def stop(self) -> bool:
        """Stop the reply in progress. Returns False when nothing is streaming."""
        if not self.is_streaming:
            return False
        self._stop_requested = True
        self._reply.cancel()
        return True

    async def send(
        self,
        text: str,
        *,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> ChatMessage:
        """
        Send one user message and stream the reply.

        Raises:
            PaperTableError: a reply is already streaming, or ``text`` is empty
            ConfigurationError: no usable model
            GenerationError: the backend failed (also stored as an error message)
        """
        text = (text or "").strip()
        if not text:
            raise PaperTableError("Message is empty")
        if self.is_streaming:
            raise PaperTableError("A reply is still streaming")

        self._llm.resolve_model()
        previous = self.history()
        if self.max_history_messages:
            previous = previous[-self.max_history_messages:]
        else:
            previous = []
        await asyncio.to_thread(
            self._store.append_message,
            self.conversation_id,
            ChatMessage(role=MessageRole.USER, content=text),
        )

        context = await asyncio.to_thread(
            build_context, self._repository, self._context, max_chars=self.max_context_chars
        )
        system, user = self._prompts.get(CHAT_ASSISTANT).render(
            context=context, history=render_history(previous), message=text
        )

        received: List[str] = []

        def on_chunk(token: str) -> None:
            received.append(token)
            if on_token is not None:
                on_token(token)

        self._stop_requested = False
        self._reply = asyncio.ensure_future(
            self._llm.stream(system=system, user=user, callbacks=StreamCallbacks(on_token=on_chunk))
        )
        try:
            content = await self._reply
            reply = ChatMessage(role=MessageRole.ASSISTANT, content=content or "".join(received))
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            logger.info(f"Chat reply stopped after {len(received)} tokens")
            reply = ChatMessage(
                role=MessageRole.ASSISTANT, content="".join(received), stopped=True
            )
        except PaperTableError as exc:
            await asyncio.to_thread(
                self._store.append_message,
                self.conversation_id,
                ChatMessage(role=MessageRole.ERROR, content=str(exc)),
            )
            raise
        finally:
            self._reply = None
            self._stop_requested = False

        await asyncio.to_thread(self._store.append_message, self.conversation_id, reply)
        return reply
