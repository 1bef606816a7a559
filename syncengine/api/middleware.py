"""
API middleware: API-key check for the status and queueing routes, CORS.
"""

import secrets

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from syncengine.config import config

# Endpoints that never require authentication
PUBLIC_ENDPOINTS = {"/health", "/docs", "/redoc", "/openapi.json"}

READ_METHODS = {"GET", "HEAD", "OPTIONS"}


def requires_api_key(request: Request) -> bool:
    """Queueing routes always need the key; status reads only when configured."""
    if not config.ENGINE_API_KEY or request.url.path in PUBLIC_ENDPOINTS:
        return False
    if request.method in READ_METHODS:
        return config.API_KEY_PROTECTS_READS
    return True


async def api_key_middleware(request: Request, call_next):
    """
    Check X-API-Key on protected routes.
    With ENGINE_API_KEY unset every request is allowed (dev mode).
    """
    if not requires_api_key(request):
        return await call_next(request)

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        return JSONResponse(
            status_code=401,
            content={"detail": "Missing API key. Include 'X-API-Key' header."},
        )

    if not secrets.compare_digest(api_key.encode(), config.ENGINE_API_KEY.encode()):
        return JSONResponse(
            status_code=403,
            content={"detail": "Invalid API key"},
        )

    return await call_next(request)


def register_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["X-API-Key", "Content-Type"],
    )

    app.middleware("http")(api_key_middleware)
