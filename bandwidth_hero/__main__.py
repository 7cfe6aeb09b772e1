import logging

import uvicorn

from .core.config import get_settings
from .main import create_app


def run() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("bandwidth_hero")
    logger.info("Running bandwidth hero proxy on %s", settings.PORT)
    # No server/date headers: the proxy must not identify itself, and the
    # redirect policy sends no date.
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        server_header=False,
        date_header=False,
        log_config=None,
    )


if __name__ == "__main__":
    run()
