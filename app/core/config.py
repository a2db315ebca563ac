from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Notes:
      - GEMINI_API_KEY is read again on every upstream call (see read_api_key).
      - GLOBAL_RATE_LIMIT is declared but only enforced when ENFORCE_GLOBAL_LIMIT is set.
      - Extra env vars are ignored to keep upgrades painless.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---- Gemini ----
    GEMINI_API_KEY: str = Field(default="")
    GEMINI_BASE_URL: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    GEMINI_MODEL: str = Field(default="gemini-2.5-flash-preview-05-20")
    UPSTREAM_TIMEOUT: float = Field(default=10.0, description="HTTP timeout (seconds)")

    # ---- HTTP surface ----
    ROUTE_PATH: str = Field(default="/api/gemini")
    CORS_ALLOW_ORIGIN: str = Field(default="https://medextractai.com")
    MAX_PROMPT_CHARS: int = Field(default=10000, description="Max characters in a prompt")
    LOG_LEVEL: str = Field(default="INFO")

    # ---- Rate limits ----
    RATE_LIMIT_PER_IP: int = Field(default=10, description="Per-IP requests per window")
    RATE_LIMIT_WINDOW_S: float = Field(default=15 * 60.0)
    GLOBAL_RATE_LIMIT: int = Field(default=1000, description="Requests per window, all clients")
    GLOBAL_RATE_LIMIT_WINDOW_S: float = Field(default=60 * 60.0)
    ENFORCE_GLOBAL_LIMIT: bool = Field(default=False)

    @field_validator("ROUTE_PATH")
    @classmethod
    def _route_leading_slash(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("UPSTREAM_TIMEOUT", "RATE_LIMIT_WINDOW_S", "GLOBAL_RATE_LIMIT_WINDOW_S")
    @classmethod
    def _floats_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be > 0")
        return float(v)

    @field_validator("MAX_PROMPT_CHARS", "RATE_LIMIT_PER_IP", "GLOBAL_RATE_LIMIT")
    @classmethod
    def _ints_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be > 0")
        return int(v)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def read_api_key() -> str:
    # Fresh read so a rotated secret is picked up without a restart.
    return Settings().GEMINI_API_KEY
