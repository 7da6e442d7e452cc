from __future__ import annotations

import string
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from papertable.application.prompts.chat import CHAT_SYSTEM, CHAT_USER
from papertable.application.prompts.column_generation import (
    COLUMN_GENERATION_SYSTEM,
    COLUMN_GENERATION_USER,
)

COLUMN_GENERATION = "column_generation"
CHAT_ASSISTANT = "chat_assistant"


def _placeholders(text: str) -> FrozenSet[str]:
    return frozenset(
        name for _, name, _, _ in string.Formatter().parse(text) if name
    )


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    system: str
    user: str

    @property
    def fields(self) -> FrozenSet[str]:
        return _placeholders(self.system) | _placeholders(self.user)

    def render(self, **values: str) -> Tuple[str, str]:
        """Return ``(system, user)`` with every placeholder filled in."""
        missing = self.fields - values.keys()
        if missing:
            raise KeyError(f"Prompt '{self.name}' needs values for: {', '.join(sorted(missing))}")
        return self.system.format(**values), self.user.format(**values)


class PromptRegistry:
    """Named prompt templates; a registered template replaces the built-in one."""

    def __init__(self) -> None:
        self._templates: Dict[str, PromptTemplate] = {
            COLUMN_GENERATION: PromptTemplate(
                name=COLUMN_GENERATION,
                system=COLUMN_GENERATION_SYSTEM,
                user=COLUMN_GENERATION_USER,
            ),
            CHAT_ASSISTANT: PromptTemplate(
                name=CHAT_ASSISTANT,
                system=CHAT_SYSTEM,
                user=CHAT_USER,
            ),
        }

    def get(self, name: str) -> PromptTemplate:
        key = (name or "").strip().lower()
        if key not in self._templates:
            raise KeyError(f"Unknown prompt template: {name}")
        return self._templates[key]

    def register(self, template: PromptTemplate) -> None:
        key = template.name.strip().lower()
        builtin = self._templates.get(key)
        # Overrides must keep the placeholders callers fill in.
        if builtin is not None and not builtin.fields <= template.fields:
            missing = ", ".join(sorted(builtin.fields - template.fields))
            raise ValueError(f"Template '{template.name}' is missing placeholders: {missing}")
        self._templates[key] = template

    def list(self) -> List[str]:
        return sorted(self._templates.keys())
