# src/blogx_chat/main.py
"""Main entry point for the BlogX messaging service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from blogx_chat.api.v1 import messages_router, realtime_router, users_router
from blogx_chat.core.settings import settings
from blogx_chat.services.hooks import MessagingHooks
from blogx_chat.services.registry import ConnectionRegistry
from blogx_chat.services.relay import MessageRelay

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Realtime one-to-one messaging for BlogX",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(messages_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(realtime_router)

# The relay must exist before the first connection, including under TestClient
# instances that skip lifespan events.
app.state.relay = MessageRelay(ConnectionRegistry(), MessagingHooks())


@app.on_event("startup")
async def on_startup() -> None:
    logger.info(
        "%s %s listening for live channels on %s",
        settings.app_name,
        settings.app_version,
        settings.relay_ws_path,
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    relay: MessageRelay = app.state.relay
    for identity in relay.registry.online_identities():
        channel = relay.registry.lookup(identity)
        if channel is not None:
            await channel.close(code=1001)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Realtime one-to-one messaging for BlogX",
        "realtime": settings.relay_ws_path,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "blogx_chat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        ws_ping_interval=settings.relay_ping_interval_seconds,
    )
