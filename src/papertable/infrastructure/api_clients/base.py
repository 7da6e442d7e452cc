"""
Shared async HTTP client for the external services (OCR, scholarly search).
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Non-retryable HTTP failure, or retries exhausted."""

    def __init__(self, message: str, *, status: int = 0, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class APIClient:
    """Async HTTP API client with rate limiting and 429/5xx backoff."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        request_interval: float = 0.0,
        *,
        user_agent: str = "papertable/1.0",
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = ClientTimeout(total=timeout)
        self.request_interval = request_interval
        self.user_agent = user_agent
        self._last_request_time = 0.0
        self._rate_lock = asyncio.Lock()
        self._session: Optional[aiohttp.ClientSession] = None

    def _default_headers(self) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers=self._default_headers(),
            )
        return self._session

    async def _wait_for_rate_limit(self) -> None:
        if self.request_interval <= 0:
            return
        async with self._rate_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.request_interval:
                await asyncio.sleep(self.request_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    @staticmethod
    def _backoff_delay(attempt: int, retry_after: Optional[str]) -> float:
        delay = 2.0 * (2 ** attempt)
        if retry_after:
            try:
                delay = min(float(retry_after), 30.0)
            except (TypeError, ValueError):
                pass
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return max(1.0, delay + jitter)

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        max_retries: int = 3,
    ) -> Dict[str, Any]:
        """Send a request and decode a JSON response, retrying on 429/5xx and timeouts."""
        url = self._url(endpoint)
        last_status = 0

        for attempt in range(max_retries + 1):
            await self._wait_for_rate_limit()
            session = await self._get_session()

            try:
                async with session.request(
                    method, url, params=params, json=json_data, data=data, headers=headers
                ) as response:
                    last_status = response.status
                    if response.status in (200, 201):
                        payload = await response.json(content_type=None)
                        return payload if isinstance(payload, dict) else {"data": payload}
                    if response.status == 429 or response.status >= 500:
                        retry_after = response.headers.get("Retry-After")
                        await response.read()
                        if attempt >= max_retries:
                            break
                        delay = self._backoff_delay(attempt, retry_after)
                        logger.warning(
                            f"HTTP {response.status} for {url}, "
                            f"retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                        continue
                    text = await response.text()
                    logger.error(f"API error {response.status}: {text[:200]}")
                    raise APIError(
                        f"API error {response.status} for {url}",
                        status=response.status,
                        body=text[:500],
                    )
            except asyncio.TimeoutError:
                if attempt >= max_retries:
                    logger.error(f"Request timeout after {max_retries + 1} attempts: {url}")
                    raise
                delay = self._backoff_delay(attempt, None)
                logger.warning(f"Timeout for {url}, retry {attempt + 1}/{max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)

        raise APIError(f"HTTP {last_status} after {max_retries + 1} attempts: {url}", status=last_status)

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        return await self.request("GET", endpoint, params=params, **kwargs)

    async def post(
        self,
        endpoint: str,
        *,
        json_data: Optional[Any] = None,
        data: Any = None,
        **kwargs,
    ) -> Dict[str, Any]:
        return await self.request("POST", endpoint, json_data=json_data, data=data, **kwargs)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
