"""Server entrypoint for container platforms.

Reads PORT (and the rest of the configuration) from the environment and
serves the API with uvicorn.
"""

import logging

import uvicorn

from ffmpeg_api.config import get_settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    logging.getLogger(__name__).info(f"Starting {settings.app_name} on port {settings.port}")
    uvicorn.run("ffmpeg_api.main:app", host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
