"""
Main entry point for the kegdex MCP server.

This module provides the main() function and server initialization.
"""

import asyncio

import structlog
from mcp.server.stdio import stdio_server

from .cache import KegCache
from .config import settings
from .logging import configure_logging
from .tools import create_server

logger = structlog.get_logger(__name__)


def main():
    """Main entry point."""
    configure_logging()

    root = settings.keg_path
    cache = KegCache(settings.cache_ttl)
    server = create_server(cache, root)

    async def run():
        await cache.keg(root).init()
        logger.info("server_starting", keg_path=str(root))
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
