from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass
class AppError(Exception):
    """A deterministic application error surfaced to clients as JSON."""

    detail: str
    code: str = "error"
    status_code: int = 400

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.detail}"

    @property
    def public_detail(self) -> str:
        if self.status_code >= 500:
            return INTERNAL_ERROR_MESSAGE
        return self.detail


@dataclass
class ClientError(AppError):
    detail: str = "Invalid prompt. Must be a string under 10000 characters."
    code: str = "invalid_prompt"
    status_code: int = 400


@dataclass
class MethodError(AppError):
    detail: str = "Method not allowed"
    code: str = "method_not_allowed"
    status_code: int = 405


@dataclass
class RateLimitError(AppError):
    detail: str = "Too many requests."
    code: str = "rate_limited"
    status_code: int = 429
    retry_after_s: int = 0


@dataclass
class UpstreamError(AppError):
    """Anything that went wrong talking to Gemini. Never shown to clients."""

    detail: str = "Upstream request failed"
    code: str = "upstream_error"
    status_code: int = 500
    upstream_status: Optional[int] = None
