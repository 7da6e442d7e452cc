"""OcrPort: PDF to markdown conversion backend."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class OcrPort(Protocol):
    def preflight(self) -> None:
        """Raise ConfigurationError when no conversion could succeed as configured."""
        ...

    async def extract_to_markdown(self, pdf_path: Path) -> str:
        """
        Convert a PDF into markdown text.

        Raises:
            ExtractionError: conversion failed or returned no text
            ConfigurationError: backend is not configured
        """
        ...

    async def close(self) -> None: ...
