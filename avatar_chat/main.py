#!/usr/bin/env python3
"""
Avatar Chat server entry point.

Configures tiered logging, then serves the FastAPI app with uvicorn. The
websocket frame ceiling is enforced by uvicorn (`ws_max_size`) as well as by
the chat handler.
"""

import asyncio

import uvicorn

from avatar_chat.config.logging_config import configure_logging, get_logger
from avatar_chat.config.settings import get_settings

logger = get_logger(__name__)


async def start_api():
    """Start FastAPI server"""
    from avatar_chat.api.server import app

    settings = get_settings()
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        ws_max_size=settings.max_message_bytes,
        ws_ping_interval=20,
        ws_ping_timeout=20,
    )
    server = uvicorn.Server(config)

    logger.info("=" * 60)
    logger.info(f"🚀 Avatar chat backend listening on {settings.host}:{settings.port}")
    logger.info(f"📍 Websocket: ws://{settings.host}:{settings.port}/ws/chat")
    logger.info(f"📍 Health check: http://{settings.host}:{settings.port}/health")
    logger.info(f"🌍 Environment: {settings.environment}")
    logger.info("=" * 60)

    await server.serve()


def main():
    """Console entry point (avatar-chat-server)"""
    configure_logging()
    try:
        asyncio.run(start_api())
    except KeyboardInterrupt:
        logger.info("👋 Interrupted by user")


if __name__ == "__main__":
    main()
