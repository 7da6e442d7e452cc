"""Runtime settings read from ``PAPERTABLE_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DB_URL = "sqlite:///data/papertable.db"
DEFAULT_DATALAB_CLOUD_URL = "https://www.datalab.to/api/v1"
DEFAULT_DATALAB_LOCAL_URL = "http://localhost:8001"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


@dataclass
class PaperTableSettings:
    db_url: str = DEFAULT_DB_URL

    ai_max_concurrent: int = 5
    ocr_max_concurrent: int = 5
    max_source_chars: int = 50000

    # OCR backend: "cloud" (DataLab API) or "local" (self-hosted Marker server)
    datalab_mode: str = "cloud"
    datalab_url: str = DEFAULT_DATALAB_LOCAL_URL
    datalab_api_key: str = ""
    local_force_ocr: bool = True
    cloud_force_ocr: bool = False
    cloud_use_llm: bool = False

    semantic_scholar_api_key: str = ""

    zotero_api_key: str = ""
    zotero_library_type: str = "user"
    zotero_library_id: str = ""
    attachment_cache_dir: str = "data/attachments"

    @property
    def datalab_use_local(self) -> bool:
        return self.datalab_mode.strip().lower() == "local"

    @classmethod
    def from_env(cls) -> "PaperTableSettings":
        return cls(
            db_url=os.getenv("PAPERTABLE_DB_URL") or DEFAULT_DB_URL,
            ai_max_concurrent=_env_int("PAPERTABLE_AI_MAX_CONCURRENT", 5, minimum=1),
            ocr_max_concurrent=_env_int("PAPERTABLE_OCR_MAX_CONCURRENT", 5, minimum=1),
            max_source_chars=_env_int("PAPERTABLE_MAX_SOURCE_CHARS", 50000, minimum=1),
            datalab_mode=os.getenv("PAPERTABLE_DATALAB_MODE", "cloud"),
            datalab_url=os.getenv("PAPERTABLE_DATALAB_URL", DEFAULT_DATALAB_LOCAL_URL),
            datalab_api_key=os.getenv("PAPERTABLE_DATALAB_API_KEY", ""),
            local_force_ocr=_env_bool("PAPERTABLE_LOCAL_FORCE_OCR", True),
            cloud_force_ocr=_env_bool("PAPERTABLE_CLOUD_FORCE_OCR", False),
            cloud_use_llm=_env_bool("PAPERTABLE_CLOUD_USE_LLM", False),
            semantic_scholar_api_key=os.getenv("PAPERTABLE_S2_API_KEY", ""),
            zotero_api_key=os.getenv("PAPERTABLE_ZOTERO_API_KEY", ""),
            zotero_library_type=os.getenv("PAPERTABLE_ZOTERO_LIBRARY_TYPE", "user"),
            zotero_library_id=os.getenv("PAPERTABLE_ZOTERO_LIBRARY_ID", ""),
            attachment_cache_dir=os.getenv("PAPERTABLE_ATTACHMENT_DIR", "data/attachments"),
        )


_settings: Optional[PaperTableSettings] = None


def get_settings() -> PaperTableSettings:
    global _settings
    if _settings is None:
        _settings = PaperTableSettings.from_env()
    return _settings
