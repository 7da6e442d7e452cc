# src/papertable/infrastructure/ocr/datalab_client.py
"""
DataLab / Marker OCR backend.

Two modes:
- cloud: multipart upload to the DataLab API, then poll the check URL
- local: JSON request to a self-hosted Marker server that reads the file itself

API documentation: https://www.datalab.to/docs
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp

from papertable.domain.errors import ConfigurationError, ExtractionError
from papertable.infrastructure.api_clients.base import APIClient, APIError
from papertable.utils.settings import (
    DEFAULT_DATALAB_CLOUD_URL,
    PaperTableSettings,
    get_settings,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0
MAX_POLLS = 300  # 300 * 2s = 10 minutes
LOCAL_TIMEOUT_SECONDS = 600
_MARKDOWN_FIELDS = ("markdown", "text", "content", "output")


class DataLabService:
    """OcrPort implementation for DataLab cloud and local Marker servers."""

    def __init__(
        self,
        settings: Optional[PaperTableSettings] = None,
        *,
        client: Optional[APIClient] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_polls: int = MAX_POLLS,
    ):
        self.settings = settings or get_settings()
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        if client is not None:
            self.client = client
        elif self.settings.datalab_use_local:
            self.client = APIClient(
                self.settings.datalab_url or "http://localhost:8001",
                timeout=LOCAL_TIMEOUT_SECONDS,
            )
        else:
            self.client = APIClient(
                DEFAULT_DATALAB_CLOUD_URL,
                api_key=self.settings.datalab_api_key or None,
                timeout=120,
            )

    def preflight(self) -> None:
        if not self.settings.datalab_use_local and not self.settings.datalab_api_key:
            raise ConfigurationError("DataLab API key is missing")

    async def extract_to_markdown(self, pdf_path: Path) -> str:
        path = Path(pdf_path)
        self.preflight()
        if not path.is_file():
            raise ExtractionError(f"PDF file not found: {path}")

        try:
            if self.settings.datalab_use_local:
                markdown = await self._convert_local(path)
            else:
                markdown = await self._convert_cloud(path)
        except (ExtractionError, ConfigurationError):
            raise
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ExtractionError(f"OCR request failed: {exc}") from exc

        if not markdown.strip():
            raise ExtractionError("OCR returned no text")
        return markdown

    async def _convert_local(self, path: Path) -> str:
        logger.info(f"DataLab local: converting {path}")
        result = await self.client.post(
            "/marker",
            json_data={
                "filepath": str(path.resolve()),
                "force_ocr": self.settings.local_force_ocr,
                "paginate_output": False,
                "output_format": "markdown",
            },
            max_retries=0,
        )
        return _extract_markdown(result)

    async def _convert_cloud(self, path: Path) -> str:
        logger.info(f"DataLab cloud: uploading {path.name}")
        payload = await asyncio.to_thread(path.read_bytes)
        form = aiohttp.FormData()
        form.add_field(
            "file",
            payload,
            filename="document.pdf",
            content_type="application/pdf",
        )
        form.add_field("force_ocr", "true" if self.settings.cloud_force_ocr else "false")
        form.add_field("use_llm", "true" if self.settings.cloud_use_llm else "false")
        form.add_field("output_format", "markdown")

        upload = await self.client.post("/marker", data=form, max_retries=0)
        check_url = upload.get("request_check_url")
        if not upload.get("success") or not check_url:
            raise ExtractionError(str(upload.get("error") or "Upload failed"))

        result = await self._poll(str(check_url))
        if result.get("status") != "complete" or result.get("success") is False:
            raise ExtractionError(str(result.get("error") or "Conversion failed"))
        return str(result.get("markdown") or "")

    async def _poll(self, check_url: str) -> Dict[str, Any]:
        for attempt in range(1, self.max_polls + 1):
            await asyncio.sleep(self.poll_interval)
            try:
                data = await self.client.get(check_url)
            except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning(f"DataLab polling error (attempt {attempt}): {exc}")
                continue
            if data.get("status") in ("complete", "failed"):
                return data
        raise ExtractionError("Polling timed out")

    async def close(self) -> None:
        await self.client.close()


def _extract_markdown(result: Dict[str, Any]) -> str:
    for key in _MARKDOWN_FIELDS:
        value = result.get(key)
        if isinstance(value, str) and value:
            return value
    data = result.get("data")
    if isinstance(data, str):
        return data
    raise ExtractionError("Could not find markdown in local server response")
