"""Control service entry point: operator API + relay push + Twitch ingestion."""

import uvicorn

from control.app import create_app
from control.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
