"""Logging setup shared by the CLI and the run-once entry point."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", *, force: bool = False) -> None:
    """Configure root logging to stdout at the given level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=force,
    )
    # httpx logs every request at INFO; keep it for DEBUG runs only
    if level.upper() != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
