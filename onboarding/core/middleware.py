"""
HTTP middleware for the onboarding API.

Every HTTP response is marked non-cacheable and carries the standard
hardening headers. Headers the route already set are left alone.
"""
from typing import List, Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from onboarding.config import Settings

RESPONSE_HEADERS: List[Tuple[bytes, bytes]] = [
    (b"cache-control", b"no-store"),
    (b"referrer-policy", b"no-referrer"),
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
]

# Orchestrator and console clients only ever call these
CORS_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Authorization", "Content-Type"]


class ResponseHeadersMiddleware:
    """ASGI middleware that appends fixed headers to every HTTP response start message."""

    def __init__(self, app, headers: List[Tuple[bytes, bytes]] = RESPONSE_HEADERS):
        self.app = app
        self.headers = headers

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                present = {name.lower() for name, _ in message.get("headers", [])}
                extra = [(name, value) for name, value in self.headers if name not in present]
                message["headers"] = list(message.get("headers", [])) + extra
            await send(message)

        return await self.app(scope, receive, send_wrapper)


def install_middleware(app: FastAPI, config: Settings) -> None:
    app.add_middleware(ResponseHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )
