from __future__ import annotations

from pydantic import BaseModel, StrictStr, ValidationInfo, field_validator


class PromptRequest(BaseModel):
    """Body of a POST to the proxy route.

    ``max_chars`` can be overridden through the validation context.
    """

    prompt: StrictStr

    @field_validator("prompt")
    @classmethod
    def _prompt_bounds(cls, v: str, info: ValidationInfo) -> str:
        max_chars = (info.context or {}).get("max_chars", 10000)
        if not v:
            raise ValueError("prompt is empty")
        if len(v) > max_chars:
            raise ValueError(f"prompt longer than {max_chars} chars")
        return v


class TextResponse(BaseModel):
    text: str


class ErrorResponse(BaseModel):
    error: str
