"""Application ports (interfaces) used by the application layer."""

from .completion_port import CompletionBackendPort, StreamCallbacks
from .host_repository_port import HostRepositoryPort
from .kv_store_port import KeyValuePort
from .ocr_port import OcrPort

__all__ = [
    "CompletionBackendPort",
    "StreamCallbacks",
    "HostRepositoryPort",
    "KeyValuePort",
    "OcrPort",
]
