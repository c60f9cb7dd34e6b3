"""Main entry point for the MCP Bridge."""

import asyncio
import signal
import sys

from config.logging_config import get_logger, setup_logging
from src.bridge.bridge_server import BridgeServer
from src.bridge.config import get_settings

logger = get_logger(__name__)


async def serve(bridge: BridgeServer) -> None:
    """Run the bridge; SIGTERM cancels it like Ctrl+C does."""
    if bridge.settings.is_stdio:
        # uvicorn installs its own handlers in HTTP mode.
        loop = asyncio.get_running_loop()
        task = asyncio.current_task()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, task.cancel)
            except NotImplementedError:
                pass  # Windows
    try:
        await bridge.run()
    except asyncio.CancelledError:
        logger.info("Received shutdown signal")


def main():
    """Main entry point."""
    try:
        settings = get_settings()
        setup_logging(level=settings.log_level, log_file=settings.log_file, stdio_mode=settings.is_stdio)

        bridge = BridgeServer(settings)
        asyncio.run(serve(bridge))

    except KeyboardInterrupt:
        logger.info("Bridge server interrupted by user")
    except Exception as e:
        logger.error("Bridge server failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
