"""Entry point for the pre-quote flow server."""

import asyncio
import logging

from dotenv import load_dotenv

from .config.settings import Settings
from .reporting import setup_error_reporting
from .repository import create_repositories
from .server import PrequoteFlowServer


def main() -> None:
    """Start the pre-quote flow server."""
    # Load environment variables
    load_dotenv()

    settings = Settings()

    logging.basicConfig(
        level=settings.logging.level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    error_reporter = setup_error_reporting(settings.monitoring)
    repositories = create_repositories(settings)

    server = PrequoteFlowServer(
        settings=settings,
        repositories=repositories,
        error_reporter=error_reporter,
    )

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Server shutdown.")


if __name__ == "__main__":
    main()
