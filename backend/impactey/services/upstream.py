from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from loguru import logger


class UpstreamError(Exception):
    """Any failed upstream call: network, timeout, 4xx/5xx or malformed payload."""

    def __init__(self, source: str, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status = status
        self.retry_after = retry_after

    @property
    def is_rate_limit(self) -> bool:
        return self.status == 429


def _retry_after(resp: Any) -> Optional[float]:
    headers = getattr(resp, "headers", None) or {}
    ra = headers.get("Retry-After") if hasattr(headers, "get") else None
    if not ra:
        return None
    try:
        return float(ra)
    except ValueError:
        return None


class JsonHttpClient:
    """
    Thin async GET-json wrapper shared by the upstream clients.
    The key is sent as a query-string parameter; it never appears in logs.
    """
    source = "upstream"
    key_param = "apikey"

    def __init__(self, api_key: str, timeout_s: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key or ""
        self.timeout_s = timeout_s
        self.client = client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        await self.client.aclose()

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self.api_key:
            raise UpstreamError(self.source, "API key missing")
        p = dict(params or {})
        p[self.key_param] = self.api_key
        try:
            resp = await self.client.get(url, params=p, timeout=self.timeout_s)
        except httpx.HTTPError as e:
            logger.warning(f"{self.source}: HTTP error for {url}: {e!r}")
            raise UpstreamError(self.source, f"network error: {e!r}") from e

        status = resp.status_code
        if status == 429:
            logger.warning(f"{self.source}: rate limited (429) for {url}")
            raise UpstreamError(self.source, "rate limited", status=429, retry_after=_retry_after(resp))
        if status == 401 or status == 403:
            logger.error(f"{self.source}: authentication failed ({status})")
            raise UpstreamError(self.source, "authentication failed", status=status)
        if status >= 400:
            logger.warning(f"{self.source}: HTTP {status} for {url}")
            raise UpstreamError(self.source, f"HTTP {status}", status=status)
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(self.source, f"malformed JSON: {e}", status=status) from e
