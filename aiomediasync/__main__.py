"""
Run a MediaSync server.

Run with: python -m aiomediasync [--host HOST] [--port PORT]

Everything else is configured through ``MEDIASYNC_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from aiomediasync.config import ServerSettings
from aiomediasync.server.server import MediaSyncServer

logger = logging.getLogger("aiomediasync")


async def _serve(settings: ServerSettings) -> None:
    loop = asyncio.get_running_loop()
    server = MediaSyncServer(loop, settings)
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await server.start_server()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await server.close()


def main(argv: list[str] | None = None) -> None:
    """Parse the command line and serve until interrupted."""
    parser = argparse.ArgumentParser(prog="aiomediasync", description=__doc__)
    parser.add_argument("--host", help="bind address (MEDIASYNC_HOST)")
    parser.add_argument("--port", type=int, help="listen port (MEDIASYNC_PORT)")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    overrides = {key: value for key in ("host", "port") if (value := getattr(args, key)) is not None}
    asyncio.run(_serve(ServerSettings(**overrides)))


if __name__ == "__main__":
    main()
