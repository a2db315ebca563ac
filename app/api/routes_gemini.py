from __future__ import annotations

import json
from typing import Dict, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.errors import AppError, ClientError, MethodError, RateLimitError, UpstreamError
from app.core.logging import get_logger, set_log_context
from app.core.rate_limit import RateLimitStore
from app.llm.gemini_client import GeminiClient
from app.schemas import ErrorResponse, PromptRequest, TextResponse

log = get_logger("gemini_proxy.routes")

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
NO_CANDIDATE_TEXT = "Sorry, the AI could not generate a response."


def cors_headers(origin: str) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Content-Type": "application/json",
    }


def client_identity(request: Request) -> str:
    return (
        request.headers.get("x-forwarded-for")
        or request.headers.get("x-nf-client-connection-ip")
        or "unknown"
    )


def error_response(exc: AppError, origin: str) -> JSONResponse:
    headers = cors_headers(origin)
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after_s)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.public_detail).model_dump(),
        headers=headers,
    )


def parse_prompt(body: bytes, max_chars: int) -> PromptRequest:
    invalid = ClientError(detail=f"Invalid prompt. Must be a string under {max_chars} characters.")
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise invalid from e
    try:
        return PromptRequest.model_validate(data, context={"max_chars": max_chars})
    except ValidationError as e:
        raise invalid from e


def build_router(route_path: str) -> APIRouter:
    router = APIRouter(tags=["gemini"])
    router.add_api_route(route_path, handle_prompt, methods=ALL_METHODS)
    return router


async def handle_prompt(request: Request) -> Response:
    settings = request.app.state.settings
    limiter: RateLimitStore = request.app.state.rate_limiter
    gemini: GeminiClient = request.app.state.gemini
    origin = settings.CORS_ALLOW_ORIGIN

    method = request.method.upper()
    if method == "OPTIONS":
        return Response(status_code=200, content=b"", headers=cors_headers(origin))
    if method != "POST":
        raise MethodError()

    ip = client_identity(request)
    decision = limiter.admit(ip)
    set_log_context(rate="allowed" if decision.allowed else "denied")
    if not decision.allowed:
        log.warning("rate limited retry_after_s=%s", decision.retry_after_s)
        raise RateLimitError(
            detail=f"Too many requests. Try again in {decision.retry_after_s} seconds.",
            retry_after_s=decision.retry_after_s,
        )

    text: Optional[str]
    try:
        req = parse_prompt(await request.body(), settings.MAX_PROMPT_CHARS)
        text = await gemini.generate(req.prompt)
    except AppError:
        raise
    except Exception as e:
        log.exception("function error: %s", e)
        raise UpstreamError(detail=f"Unexpected error: {type(e).__name__}") from e

    if text is None:
        log.info("gemini returned no usable candidate")
        text = NO_CANDIDATE_TEXT

    return JSONResponse(
        status_code=200,
        content=TextResponse(text=text).model_dump(),
        headers=cors_headers(origin),
    )
