from .chat_session import ChatMessage, ChatMessageStore, ChatSession, ContextItem, ContextKind
from .content_generator import CellPrompt, ContentGenerator
from .llm_service import LLMService
from .source_resolver import SourceResolver

__all__ = [
    "CellPrompt",
    "ChatMessage",
    "ChatMessageStore",
    "ChatSession",
    "ContentGenerator",
    "ContextItem",
    "ContextKind",
    "LLMService",
    "SourceResolver",
]
