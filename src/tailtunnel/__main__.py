"""Run the tunnel service with uvicorn."""

import uvicorn

from .api import create_app
from .common.logging import get_logger, setup_logging
from .config import get_settings

logger = get_logger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info("Listening", host=settings.bind_host, port=settings.bind_port)
    uvicorn.run(
        create_app(settings),
        host=settings.bind_host,
        port=settings.bind_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
