"""Logging setup for the CobolGraph CLI: rich console output plus an optional log file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "cobolgraph_cli"


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """Configure logging for a CLI run.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Suppress all but ERROR level logging
        log_file: Optional file that receives every record at DEBUG level

    Returns:
        The package logger
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    console_handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
        markup=False,
        show_time=True,
        show_path=verbose,
    )
    console_handler.setLevel(level)
    handlers: List[logging.Handler] = [console_handler]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        handlers.append(file_handler)

    # force=True so repeated CLI invocations in one process replace earlier handlers.
    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else level)
    return logger
