from __future__ import annotations

import hashlib
import json
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional

from papertable.application.ports.completion_port import CompletionBackendPort, StreamCallbacks
from papertable.domain.errors import ConfigurationError, GenerationError
from papertable.domain.model_config import ModelConfig
from papertable.infrastructure.stores.model_config_store import ModelConfigStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_ENTRIES = 256


class LLMService:
    """Project-level LLM facade with active-model resolution and light caching."""

    def __init__(
        self,
        models: ModelConfigStore,
        backend: CompletionBackendPort,
        *,
        enable_cache: bool = True,
        max_cache_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
    ) -> None:
        self._models = models
        self._backend = backend
        self._enable_cache = enable_cache
        self.max_cache_entries = max(1, int(max_cache_entries))
        self._cache: "OrderedDict[str, str]" = OrderedDict()

    def resolve_model(self, model: Optional[ModelConfig] = None) -> ModelConfig:
        """Explicit model, else the active one. Raises ConfigurationError when none is usable."""
        config = model or self._models.get_active()
        if config is None:
            raise ConfigurationError(
                "No AI model is configured. Add a model configuration first."
            )
        if not config.api_url or not config.model:
            raise ConfigurationError(f"Model configuration '{config.name}' is incomplete")
        return config

    async def complete(
        self,
        *,
        system: str,
        user: str,
        model: Optional[ModelConfig] = None,
        use_cache: bool = True,
    ) -> str:
        config = self.resolve_model(model)
        cache_key = self._cache_key(system=system, user=user, model=config)
        if self._enable_cache and use_cache and cache_key in self._cache:
            self._cache.move_to_end(cache_key)
            return self._cache[cache_key]

        try:
            result = (await self._backend.complete(system, user, config) or "").strip()
        except (GenerationError, ConfigurationError):
            raise
        except Exception as exc:
            logger.warning("LLM complete failed model=%s error=%s", config.model, exc)
            raise GenerationError(f"Completion failed: {exc}") from exc

        # Only successful completions are cached so failures are retried.
        if result and self._enable_cache and use_cache:
            self._remember(cache_key, result)
        return result

    async def stream(
        self,
        *,
        system: str,
        user: str,
        callbacks: Optional[StreamCallbacks] = None,
        model: Optional[ModelConfig] = None,
    ) -> str:
        config = self.resolve_model(model)
        try:
            return await self._backend.complete_stream(
                system, user, config, callbacks or StreamCallbacks()
            )
        except (GenerationError, ConfigurationError):
            raise
        except Exception as exc:
            logger.warning("LLM stream failed model=%s error=%s", config.model, exc)
            raise GenerationError(f"Streaming failed: {exc}") from exc

    def describe_active_model(self) -> Dict[str, Any]:
        config = self._models.get_active()
        if config is None:
            return {"name": "", "model": "", "api_url": ""}
        return {"name": config.name, "model": config.model, "api_url": config.api_url}

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _remember(self, key: str, value: str) -> None:
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_cache_entries:
            self._cache.popitem(last=False)

    @staticmethod
    def _cache_key(*, system: str, user: str, model: ModelConfig) -> str:
        payload = json.dumps(
            {
                "model_id": model.id,
                "model": model.model,
                "system": system,
                "user": user,
            },
            ensure_ascii=False,
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    async def close(self) -> None:
        await self._backend.close()
