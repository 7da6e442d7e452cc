import pytest

from papertable.application.ports.completion_port import StreamCallbacks
from papertable.application.services.llm_service import LLMService
from papertable.domain.errors import ConfigurationError, GenerationError
from papertable.infrastructure.stores import InMemoryKeyValueStore, ModelConfigStore


class _FakeBackend:
    def __init__(self, responses=None):
        self.responses = list(responses or ["ok"])
        self.calls = 0
        self.models = []

    async def complete(self, system, user, model):
        self.calls += 1
        self.models.append(model.model)
        response = self.responses[min(self.calls, len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    async def complete_stream(self, system, user, model, callbacks):
        for token in ("A", "B"):
            if callbacks.on_token:
                callbacks.on_token(token)
        if callbacks.on_complete:
            callbacks.on_complete("AB")
        return "AB"

    async def close(self):
        return None


def _store(*models):
    store = ModelConfigStore(InMemoryKeyValueStore())
    for name in models:
        store.add_config(
            {"name": name, "api_url": "https://api.example.com/v1", "api_key": "sk", "model": name}
        )
    return store


@pytest.mark.asyncio
async def test_complete_uses_cache_for_same_request():
    backend = _FakeBackend(["cached"])
    service = LLMService(_store("m1"), backend)

    out1 = await service.complete(system="s", user="u")
    out2 = await service.complete(system="s", user="u")

    assert out1 == out2 == "cached"
    assert backend.calls == 1


@pytest.mark.asyncio
async def test_empty_results_are_not_cached():
    backend = _FakeBackend(["", "second"])
    service = LLMService(_store("m1"), backend)

    assert await service.complete(system="s", user="u") == ""
    assert await service.complete(system="s", user="u") == "second"
    assert backend.calls == 2


@pytest.mark.asyncio
async def test_active_model_is_used():
    store = _store("m1", "m2")
    store.set_active_id(store.list_configs()[1].id)
    backend = _FakeBackend()
    service = LLMService(store, backend)

    await service.complete(system="s", user="u")

    assert backend.models == ["m2"]
    assert service.describe_active_model()["model"] == "m2"


@pytest.mark.asyncio
async def test_no_model_raises_configuration_error():
    service = LLMService(_store(), _FakeBackend())

    with pytest.raises(ConfigurationError):
        await service.complete(system="s", user="u")


@pytest.mark.asyncio
async def test_backend_exception_is_wrapped():
    service = LLMService(_store("m1"), _FakeBackend([ValueError("bad json")]))

    with pytest.raises(GenerationError):
        await service.complete(system="s", user="u")


@pytest.mark.asyncio
async def test_stream_forwards_callbacks():
    tokens = []
    done = []
    service = LLMService(_store("m1"), _FakeBackend())

    text = await service.stream(
        system="s",
        user="u",
        callbacks=StreamCallbacks(on_token=tokens.append, on_complete=done.append),
    )

    assert text == "AB"
    assert tokens == ["A", "B"]
    assert done == ["AB"]


@pytest.mark.asyncio
async def test_use_cache_false_always_calls_backend():
    backend = _FakeBackend(["first", "second"])
    service = LLMService(_store("m1"), backend)

    assert await service.complete(system="s", user="u") == "first"
    assert await service.complete(system="s", user="u", use_cache=False) == "second"
    assert backend.calls == 2


@pytest.mark.asyncio
async def test_cache_evicts_least_recently_used_entry():
    backend = _FakeBackend(["a", "b", "c", "a again"])
    service = LLMService(_store("m1"), backend, max_cache_entries=2)

    await service.complete(system="s", user="1")
    await service.complete(system="s", user="2")
    await service.complete(system="s", user="1")  # hit, "1" becomes most recent
    await service.complete(system="s", user="3")  # evicts "2"

    assert service.cache_size == 2
    assert backend.calls == 3
    assert await service.complete(system="s", user="1") == "a"
    assert backend.calls == 3
    assert await service.complete(system="s", user="2") == "a again"
    assert backend.calls == 4
