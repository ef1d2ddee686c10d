"""Main entry point for the streaming server.

Runs the FastAPI application under uvicorn. In development the server
logs through the console renderer; in production it emits JSON.
"""

import sys
from typing import NoReturn

import uvicorn

from src.config import settings
from src.logger import get_logger
from src.server.app import create_app

logger = get_logger(__name__)


def main() -> NoReturn:
    """Main entry point for the server.

    This function is called when running the module directly.
    """
    logger.info(
        "server_starting",
        environment=settings.environment,
        log_level=settings.effective_log_level,
        host=settings.host,
        port=settings.port,
        providers=settings.enabled_providers,
    )
    logger.debug("config_loaded", **settings.get_safe_dict())

    try:
        app = create_app(settings)
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_config=None,
            access_log=settings.is_development,
        )
    except KeyboardInterrupt:
        logger.info("server_interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("server_crashed", error=str(e))
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
