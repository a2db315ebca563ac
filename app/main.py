from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import build_router
from app.api.routes_gemini import client_identity, cors_headers, error_response
from app.core.config import Settings, get_settings, read_api_key
from app.core.errors import AppError, MethodError, UpstreamError
from app.core.logging import get_logger, set_log_context, setup_logging
from app.core.rate_limit import RateLimitStore, make_rate_limiter
from app.llm.gemini_client import GeminiClient

log = get_logger("gemini_proxy.main")


def create_app(
    settings: Optional[Settings] = None,
    *,
    rate_limiter: Optional[RateLimitStore] = None,
    gemini: Optional[GeminiClient] = None,
) -> FastAPI:
    """Build the proxy app.

    The limiter and upstream client are created in the lifespan unless passed
    in. Limiter state lives exactly as long as this app instance.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)

        app.state.settings = settings
        app.state.rate_limiter = rate_limiter or make_rate_limiter(settings)
        app.state.gemini = gemini or GeminiClient(
            base_url=settings.GEMINI_BASE_URL,
            model=settings.GEMINI_MODEL,
            api_key=read_api_key,
            timeout_s=settings.UPSTREAM_TIMEOUT,
        )

        log.info(
            "startup ok | model=%s route=%s per_ip=%s/%ss global_enforced=%s",
            settings.GEMINI_MODEL,
            settings.ROUTE_PATH,
            settings.RATE_LIMIT_PER_IP,
            int(settings.RATE_LIMIT_WINDOW_S),
            settings.ENFORCE_GLOBAL_LIMIT,
        )
        if not settings.ENFORCE_GLOBAL_LIMIT:
            log.info(
                "global limit %s/%ss declared but not enforced",
                settings.GLOBAL_RATE_LIMIT,
                int(settings.GLOBAL_RATE_LIMIT_WINDOW_S),
            )
        try:
            yield
        finally:
            await app.state.gemini.aclose()
            log.info("shutdown ok")

    app = FastAPI(title="Gemini Proxy", version="1.0", lifespan=lifespan)
    app.include_router(build_router(settings.ROUTE_PATH))

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        set_log_context(request_id=rid, client_ip=client_identity(request), rate="-")

        t0 = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            dt_ms = int((time.perf_counter() - t0) * 1000)
            log.debug("request %s %s done in %sms", request.method, request.url.path, dt_ms)

        response.headers["X-Request-ID"] = rid
        return response

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            log.error("%s (code=%s)", exc.detail, exc.code)
        return error_response(exc, settings.CORS_ALLOW_ORIGIN)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Methods outside the route's list are rejected by the router itself.
        if exc.status_code == 405:
            return error_response(MethodError(), settings.CORS_ALLOW_ORIGIN)
        detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": detail},
            headers=cors_headers(settings.CORS_ALLOW_ORIGIN),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        # Served by ServerErrorMiddleware, outside request_context, which then
        # re-raises exc to the server. The request id has to be set here.
        log.exception("unhandled error: %s", exc)
        resp = error_response(
            UpstreamError(detail=str(exc), code="internal_error"), settings.CORS_ALLOW_ORIGIN
        )
        rid = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    return app


app = create_app()
