from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from papertable.application.prompts import COLUMN_GENERATION, PromptRegistry
from papertable.application.prompts.column_generation import (
    FALLBACK_INSTRUCTION,
    LENGTH_HINT,
)
from papertable.application.services.llm_service import LLMService
from papertable.domain.errors import ConfigurationError, GenerationError
from papertable.domain.paper import Paper
from papertable.domain.table import ColumnDefinition

logger = logging.getLogger(__name__)

DEFAULT_MAX_SOURCE_CHARS = 50000


@dataclass(frozen=True)
class CellPrompt:
    system: str
    user: str
    source_chars: int
    truncated: bool


class ContentGenerator:
    """Turns (paper, column, source text) into one cell value via the LLM."""

    def __init__(
        self,
        llm: LLMService,
        *,
        prompt_registry: Optional[PromptRegistry] = None,
        max_source_chars: int = DEFAULT_MAX_SOURCE_CHARS,
    ):
        self._llm = llm
        self._prompts = prompt_registry or PromptRegistry()
        self.max_source_chars = max(1, int(max_source_chars))

    def build_prompt(
        self,
        paper: Paper,
        column: ColumnDefinition,
        source_text: str,
        *,
        response_length_budget: int = 0,
    ) -> CellPrompt:
        """
        Assemble the system and user prompt for one cell.

        Source text longer than ``max_source_chars`` is cut at the cap; there
        is no chunking or summarization. A positive ``response_length_budget``
        adds a word limit hint, 0 leaves the length open.
        """
        template = self._prompts.get(COLUMN_GENERATION)
        source = source_text or ""
        truncated = len(source) > self.max_source_chars
        if truncated:
            source = source[: self.max_source_chars]

        instruction = (column.generation_instruction or "").strip()
        if not instruction:
            instruction = FALLBACK_INSTRUCTION.format(column_name=column.name or column.id)

        length_hint = ""
        if response_length_budget and response_length_budget > 0:
            length_hint = LENGTH_HINT.format(max_words=int(response_length_budget))

        system, user = template.render(
            title=paper.title or "Untitled",
            source=source,
            instruction=instruction,
            length_hint=length_hint,
        )
        return CellPrompt(
            system=system,
            user=user,
            source_chars=len(source),
            truncated=truncated,
        )

    def preflight(self) -> None:
        """Raise ConfigurationError if no model could serve a generation call."""
        self._llm.resolve_model()

    async def generate(
        self,
        paper: Paper,
        column: ColumnDefinition,
        source_text: str,
        *,
        response_length_budget: int = 0,
        use_cache: bool = True,
    ) -> str:
        prompt = self.build_prompt(
            paper, column, source_text, response_length_budget=response_length_budget
        )
        if prompt.truncated:
            logger.debug(
                f"Source for paper={paper.id} truncated to {prompt.source_chars} chars"
            )

        try:
            text = await self._llm.complete(
                system=prompt.system, user=prompt.user, use_cache=use_cache
            )
        except (ConfigurationError, GenerationError):
            raise
        except Exception as exc:
            raise GenerationError(f"Generation failed: {exc}") from exc

        text = (text or "").strip()
        if not text:
            raise GenerationError(
                f"Model returned an empty response for column '{column.name}'"
            )
        return text
