from .routes_gemini import build_router

__all__ = ["build_router"]
