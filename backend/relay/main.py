"""Relay entry point: WebSocket sync channel + TTS proxy."""

import asyncio
import logging

from relay.config import get_settings
from relay.server import RelayServer
from shared.logging import setup_logging

LOGGER: logging.Logger = logging.getLogger("Relay")


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, "minaqueue-relay")

    async def runner() -> None:
        server = RelayServer(settings)
        await server.start()
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(runner())
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()
