import pytest

from papertable.application.prompts import (
    CHAT_ASSISTANT,
    COLUMN_GENERATION,
    PromptRegistry,
    PromptTemplate,
)
from papertable.application.services.content_generator import ContentGenerator
from papertable.application.services.llm_service import LLMService
from papertable.domain.errors import ConfigurationError, GenerationError
from papertable.domain.paper import Paper
from papertable.domain.table import ColumnDefinition, ColumnKind
from papertable.infrastructure.stores import InMemoryKeyValueStore, ModelConfigStore


class _FakeBackend:
    def __init__(self, response: str = "Randomized controlled trial"):
        self.response = response
        self.calls = []

    async def complete(self, system, user, model):
        self.calls.append((system, user, model))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def complete_stream(self, system, user, model, callbacks):
        return self.response

    async def close(self):
        return None


def _models(configured: bool = True) -> ModelConfigStore:
    store = ModelConfigStore(InMemoryKeyValueStore())
    if configured:
        store.add_config(
            {"name": "local", "api_url": "http://llm.local/v1", "api_key": "k", "model": "m"}
        )
    return store


def _generator(backend, *, configured: bool = True, max_source_chars: int = 50000):
    llm = LLMService(_models(configured), backend)
    return ContentGenerator(llm, max_source_chars=max_source_chars)


PAPER = Paper(id="p1", title="Drug X in adults")
COLUMN = ColumnDefinition(
    id="methodology",
    name="Methodology",
    kind=ColumnKind.COMPUTED,
    generation_instruction="describe the study design",
)


def test_source_one_char_over_cap_is_truncated_to_cap():
    generator = _generator(_FakeBackend(), max_source_chars=100)
    source = "a" * 100 + "Z"

    prompt = generator.build_prompt(PAPER, COLUMN, source)

    assert prompt.truncated is True
    assert prompt.source_chars == 100
    assert "a" * 100 in prompt.user
    assert "Z" not in prompt.user


def test_source_exactly_at_cap_is_kept():
    generator = _generator(_FakeBackend(), max_source_chars=100)

    prompt = generator.build_prompt(PAPER, COLUMN, "b" * 100)

    assert prompt.truncated is False
    assert prompt.source_chars == 100


def test_prompt_contains_title_and_instruction():
    generator = _generator(_FakeBackend())

    prompt = generator.build_prompt(PAPER, COLUMN, "N=120")

    assert "Drug X in adults" in prompt.user
    assert "describe the study design" in prompt.user
    assert "no preamble" in prompt.system


def test_missing_instruction_falls_back_to_column_name():
    generator = _generator(_FakeBackend())
    column = ColumnDefinition(id="c1", name="Limitations", kind=ColumnKind.COMPUTED)

    prompt = generator.build_prompt(PAPER, column, "text")

    assert "Extract information related to 'Limitations'" in prompt.user


def test_length_budget_zero_means_unlimited():
    generator = _generator(_FakeBackend())

    unlimited = generator.build_prompt(PAPER, COLUMN, "text", response_length_budget=0)
    bounded = generator.build_prompt(PAPER, COLUMN, "text", response_length_budget=40)

    assert "words" not in unlimited.user
    assert "at most 40 words" in bounded.user


@pytest.mark.asyncio
async def test_generate_returns_stripped_text():
    backend = _FakeBackend(response="  Cohort study \n")
    generator = _generator(backend)

    value = await generator.generate(PAPER, COLUMN, "text")

    assert value == "Cohort study"
    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_empty_response_is_a_generation_error():
    generator = _generator(_FakeBackend(response="   "))

    with pytest.raises(GenerationError):
        await generator.generate(PAPER, COLUMN, "text")


@pytest.mark.asyncio
async def test_backend_failure_is_a_generation_error():
    generator = _generator(_FakeBackend(response=RuntimeError("connection reset")))

    with pytest.raises(GenerationError):
        await generator.generate(PAPER, COLUMN, "text")


@pytest.mark.asyncio
async def test_no_model_configured_is_a_configuration_error():
    backend = _FakeBackend()
    generator = _generator(backend, configured=False)

    with pytest.raises(ConfigurationError):
        generator.preflight()
    with pytest.raises(ConfigurationError):
        await generator.generate(PAPER, COLUMN, "text")
    assert backend.calls == []


def test_registered_template_overrides_builtin_prompt():
    registry = PromptRegistry()
    registry.register(
        PromptTemplate(
            name=COLUMN_GENERATION,
            system="Answer in one sentence.",
            user="{title} | {instruction}{length_hint}\n---\n{source}",
        )
    )
    generator = ContentGenerator(
        LLMService(_models(), _FakeBackend()), prompt_registry=registry
    )

    prompt = generator.build_prompt(PAPER, COLUMN, "body")

    assert prompt.system == "Answer in one sentence."
    assert prompt.user.startswith("Drug X in adults | describe the study design")


def test_override_missing_placeholders_is_rejected():
    registry = PromptRegistry()

    with pytest.raises(ValueError, match="source"):
        registry.register(
            PromptTemplate(name=COLUMN_GENERATION, system="s", user="{title}: {instruction}{length_hint}")
        )
    assert registry.list() == [CHAT_ASSISTANT, COLUMN_GENERATION]
