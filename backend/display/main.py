"""Display service entry point: sequencer + speech, driven over the relay."""

import asyncio
import logging

from display.config import get_settings
from display.health_server import HealthCheckServer
from display.service import DisplayService
from shared.logging import setup_logging

LOGGER: logging.Logger = logging.getLogger("Display")


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, "minaqueue-display")

    async def runner() -> None:
        service = DisplayService(settings)
        health = HealthCheckServer(service, host=settings.host, port=settings.port)
        await health.start()
        try:
            await service.run_forever()
        finally:
            await health.stop()

    try:
        asyncio.run(runner())
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()
