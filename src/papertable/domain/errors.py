"""Error taxonomy for table generation and extraction."""

from __future__ import annotations


class PaperTableError(Exception):
    """Base class for all papertable errors."""


class SourceUnavailable(PaperTableError):
    """Paper has neither notes nor a PDF attachment.

    Surfaced as an ``emptySource`` outcome, not as a failure.
    """


class ExtractionError(PaperTableError):
    """OCR of a PDF attachment failed or produced no text."""


class GenerationError(PaperTableError):
    """Generation backend failed or returned empty/malformed content."""


class ConfigurationError(PaperTableError):
    """No usable model or backend is configured.

    Knowable before any network call, so it aborts a whole batch up front.
    """


class BatchInProgressError(PaperTableError):
    """A batch is already running for the same table."""

    def __init__(self, table_id: str):
        super().__init__(f"A batch is already running for table {table_id}")
        self.table_id = table_id


class ProtectedColumnError(PaperTableError):
    """Core columns (title/author/year/sources) cannot be deleted."""
