"""
MCP server for a persistent knowledge graph memory.
"""

import argparse
import asyncio
import sys
from .context import ctx
from .graph_logging import logger
from .server import start_server
from .settings import ConfigurationError
from .version import GRAPH_MEMORY_VERSION


def main():
    # Parse version flag early, before any initialization
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-v", "--version", action="store_true")
    args, _ = parser.parse_known_args()

    if args.version:
        print(GRAPH_MEMORY_VERSION)
        sys.exit(0)

    try:
        # Initialize context first to get settings and logger
        ctx.init()
    except ConfigurationError as e:
        logger.error(f"⛔ Configuration error: {e}")
        sys.exit(1)

    logger.info(f"🔍 Store path: {ctx.settings.store_path}")
    logger.info(f"🔍 Backup file: {ctx.settings.memory_path or 'disabled'}")
    try:
        logger.debug("🚀 Starting graph memory server...")
        asyncio.run(start_server())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("👋 Shutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"⛔ Graph memory server encountered an uncaught exception: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
