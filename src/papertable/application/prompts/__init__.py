from .registry import CHAT_ASSISTANT, COLUMN_GENERATION, PromptRegistry, PromptTemplate

__all__ = ["CHAT_ASSISTANT", "COLUMN_GENERATION", "PromptRegistry", "PromptTemplate"]
