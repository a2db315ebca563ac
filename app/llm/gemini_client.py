from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import httpx

from app.core.errors import UpstreamError
from app.core.logging import get_logger


def build_payload(prompt: str) -> Dict[str, Any]:
    return {"contents": [{"parts": [{"text": prompt}]}]}


def extract_text(data: Any) -> Optional[str]:
    """First candidate's first part text, or None when Gemini produced nothing usable."""
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts:
        return None
    part = parts[0]
    text = part.get("text") if isinstance(part, dict) else None
    if text is None:
        return None
    return str(text)


class GeminiClient:
    """Single-shot client for the generateContent endpoint. No retries, no streaming."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: Callable[[], str],
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._api_key = api_key

        timeout = httpx.Timeout(timeout_s, connect=min(10.0, timeout_s))
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._log = get_logger("gemini_proxy.upstream")

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def generate(self, prompt: str) -> Optional[str]:
        t0 = time.perf_counter()
        try:
            r = await self._client.post(
                self.url,
                params={"key": self._api_key()},
                json=build_payload(prompt),
            )
        except httpx.HTTPError as e:
            # str(e) can include the request URL, and with it the key.
            raise UpstreamError(detail=f"Gemini unreachable: {type(e).__name__}") from e

        dt_ms = int((time.perf_counter() - t0) * 1000)
        if not r.is_success:
            raise UpstreamError(
                detail=f"Gemini API error: {r.status_code} {r.reason_phrase}",
                upstream_status=r.status_code,
            )

        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamError(detail="Gemini returned a non-JSON body") from e

        text = extract_text(data)
        self._log.info(
            "gemini ok model=%s latency_ms=%s candidate=%s",
            self.model,
            dt_ms,
            text is not None,
        )
        return text
