"""Command line entry point: ``python -m denormalizer``."""

import asyncio
import logging
import sys

from .config import load_settings
from .domain.exceptions import ConfigurationError, DenormalizerError
from .logging import configure_logging
from .worker import run_worker

LOGGER = logging.getLogger("denormalizer")


def main() -> int:
    """Run the worker process.

    Returns:
        The process exit status: 0 after a graceful shutdown, 1 when the
        configuration is invalid or a stream failed to start.
    """
    try:
        settings = load_settings()
    except ConfigurationError as err:
        configure_logging()
        LOGGER.error("Invalid configuration: %s", err)
        return 1

    configure_logging(settings.log_level)
    try:
        asyncio.run(run_worker(settings))
    except DenormalizerError as err:
        LOGGER.error("Worker aborted: %s", err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
