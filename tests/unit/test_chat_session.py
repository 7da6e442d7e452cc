import asyncio

import pytest

from papertable.application.services import (
    ChatMessageStore,
    ChatSession,
    ContextKind,
    LLMService,
)
from papertable.application.services.chat_session import (
    ChatMessage,
    MessageRole,
    build_context,
    render_history,
)
from papertable.domain.errors import ConfigurationError, GenerationError, PaperTableError
from papertable.infrastructure.connectors import InMemoryHostRepository
from papertable.infrastructure.stores import InMemoryKeyValueStore, ModelConfigStore


class _StreamingBackend:
    """Streams the configured tokens, optionally pausing after each one."""

    def __init__(self, tokens=("Hello", " there"), *, pause: float = 0.0, error=None):
        self.tokens = list(tokens)
        self.pause = pause
        self.error = error
        self.requests = []

    async def complete(self, system, user, model):
        return "".join(self.tokens)

    async def complete_stream(self, system, user, model, callbacks):
        self.requests.append((system, user))
        if self.error is not None:
            raise self.error
        for token in self.tokens:
            if callbacks.on_token:
                callbacks.on_token(token)
            await asyncio.sleep(self.pause)
        text = "".join(self.tokens)
        if callbacks.on_complete:
            callbacks.on_complete(text)
        return text

    async def close(self):
        return None


def _repo():
    repo = InMemoryHostRepository()
    repo.add_paper(
        "p1",
        "Drug X in adults",
        authors=["A. Author", "B. Author"],
        year=2021,
        notes=["<p>Randomized, N=120</p>"],
        tags=["rct"],
    )
    repo.add_paper("p2", "Ten-year cohort", year=2019, tags=["cohort", "RCT"])
    repo.add_paper("p3", "Untagged")
    return repo


def _session(backend=None, *, kv=None, repo=None, configured=True, **kwargs):
    kv = kv or InMemoryKeyValueStore()
    models = ModelConfigStore(kv)
    if configured:
        models.add_config(
            {"name": "m", "api_url": "http://llm.local/v1", "api_key": "k", "model": "m"}
        )
    llm = LLMService(models, backend or _StreamingBackend())
    return ChatSession(llm, repo or _repo(), ChatMessageStore(kv), **kwargs)


def test_context_lists_papers_with_notes_then_selected_notes():
    repo = _repo()
    note_id = repo.create_note("p3", "<h2>Reading notes</h2><p>Compare with p1</p>")
    session = _session(repo=repo)
    session.add_context(ContextKind.PAPER, "p1", "Drug X in adults")
    session.add_context(ContextKind.NOTE, note_id, "My notes")

    context = build_context(repo, session.context)

    assert context.startswith("=== Selected Papers ===")
    assert "--- Drug X in adults --- (2021)" in context
    assert "Authors: A. Author, B. Author" in context
    assert "Randomized, N=120" in context
    assert "=== Notes ===\n--- My notes ---\nReading notes" in context


def test_tag_expands_to_every_tagged_paper_once():
    repo = _repo()
    session = _session(repo=repo)
    session.add_context(ContextKind.TAG, "rct")
    session.add_context(ContextKind.PAPER, "p1")

    context = build_context(repo, session.context)

    assert context.count("Drug X in adults") == 1
    assert "Ten-year cohort" in context
    assert "Untagged" not in context


def test_empty_selection_and_context_cap():
    repo = _repo()
    assert build_context(repo, []) == "No papers or notes are selected."

    session = _session(repo=repo)
    session.add_context(ContextKind.PAPER, "p1")
    assert len(build_context(repo, session.context, max_chars=20)) == 20


def test_context_selection_is_deduplicated_and_persisted():
    kv = InMemoryKeyValueStore()
    session = _session(kv=kv)

    assert session.add_context(ContextKind.PAPER, "p1") is True
    assert session.add_context(ContextKind.PAPER, "p1") is False
    assert session.add_context(ContextKind.TAG, "p1") is True
    assert session.remove_context(ContextKind.TAG, "p1") is True
    assert session.remove_context(ContextKind.TAG, "p1") is False

    reopened = _session(kv=kv, configured=False)
    assert [(i.kind, i.id) for i in reopened.context] == [(ContextKind.PAPER, "p1")]


@pytest.mark.asyncio
async def test_send_streams_tokens_and_persists_both_messages():
    kv = InMemoryKeyValueStore()
    backend = _StreamingBackend()
    session = _session(backend, kv=kv)
    session.add_context(ContextKind.PAPER, "p1")
    tokens = []

    reply = await session.send("What was the sample size?", on_token=tokens.append)

    assert tokens == ["Hello", " there"]
    assert reply.role == MessageRole.ASSISTANT
    assert reply.content == "Hello there"
    assert not reply.stopped
    system, user = backend.requests[0]
    assert "Randomized, N=120" in system
    assert user == "What was the sample size?"

    history = _session(kv=kv, configured=False).history()
    assert [(m.role, m.content) for m in history] == [
        (MessageRole.USER, "What was the sample size?"),
        (MessageRole.ASSISTANT, "Hello there"),
    ]


@pytest.mark.asyncio
async def test_earlier_turns_are_sent_with_the_next_message():
    backend = _StreamingBackend(["Fine."])
    session = _session(backend)

    await session.send("First question")
    await session.send("Second question")

    _, user = backend.requests[1]
    assert user.startswith("Conversation so far:\nUser: First question\nAssistant: Fine.")
    assert user.endswith("User: Second question")


@pytest.mark.asyncio
async def test_stop_keeps_partial_reply():
    backend = _StreamingBackend(["one ", "two ", "three"], pause=0.05)
    session = _session(backend)
    tokens = []

    sending = asyncio.create_task(session.send("Tell me more", on_token=tokens.append))
    while not tokens:
        await asyncio.sleep(0.005)
    assert session.is_streaming
    assert session.stop() is True

    reply = await sending

    assert reply.stopped
    assert reply.content == "one "
    assert not session.is_streaming
    assert session.stop() is False
    assert session.history()[-1].stopped


@pytest.mark.asyncio
async def test_second_message_while_streaming_is_rejected():
    session = _session(_StreamingBackend(["a", "b"], pause=0.05))

    first = asyncio.create_task(session.send("One"))
    while not session.is_streaming:
        await asyncio.sleep(0.005)
    with pytest.raises(PaperTableError, match="still streaming"):
        await session.send("Two")

    assert (await first).content == "ab"


@pytest.mark.asyncio
async def test_backend_failure_is_stored_as_error_message():
    session = _session(_StreamingBackend(error=RuntimeError("socket closed")))

    with pytest.raises(GenerationError):
        await session.send("Hello?")

    roles = [m.role for m in session.history()]
    assert roles == [MessageRole.USER, MessageRole.ERROR]
    assert render_history(session.history()) == "Conversation so far:\nUser: Hello?\n\nUser: "


@pytest.mark.asyncio
async def test_missing_model_fails_before_anything_is_stored():
    session = _session(configured=False)

    with pytest.raises(ConfigurationError):
        await session.send("Hello?")
    assert session.history() == []


def test_clear_drops_messages_and_context():
    kv = InMemoryKeyValueStore()
    session = _session(kv=kv)
    session.add_context(ContextKind.PAPER, "p1")
    ChatMessageStore(kv).append_message(
        session.conversation_id, ChatMessage(role=MessageRole.USER, content="hi")
    )

    session.clear()

    assert session.history() == []
    assert session.context == []
    assert _session(kv=kv, configured=False).context == []
