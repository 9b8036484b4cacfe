"""Entry point for the Nylas CLI."""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv


def configure_logging() -> None:
    """Configure logging to stderr.

    Sends all logs to stderr so they don't interfere with command output
    on stdout (``nylas auth token``, ``--json``).

    Respects LOG_LEVEL env var (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    log_level_str = os.getenv("LOG_LEVEL", "WARNING").upper()
    log_level = logging.getLevelNamesMapping().get(log_level_str, logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # Reduce noise from HTTP and keyring libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("keyring").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point.

    Loads environment, configures logging and dispatches to the CLI.
    """
    # Load .env file if present
    load_dotenv()

    configure_logging()

    # Import the CLI after logging is configured
    from nylas_cli.cli import app

    app()


if __name__ == "__main__":
    main()
