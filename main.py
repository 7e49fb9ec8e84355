"""
Main entry point for the Convertor application.

This script configures the logger for start-up, then hands over to the
command-line interface, which parses the arguments, loads the configuration,
and runs the conversion batch.
"""

import sys

from loguru import logger

from convertor.cli import main
from convertor.config.common import LOGGER_FORMAT

# Configure the logger for initial setup.
# The level is overridden by the command-line arguments.
logger.remove()
logger.add(sys.stderr, level="INFO", format=LOGGER_FORMAT)


if __name__ == "__main__":
    sys.exit(main())
