"""
Logging setup for the envseek CLI.

Log records go to stderr through a rich handler so that warnings and errors
never mix with the matches printed on stdout.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from envseek.core.config import LoggingConfig


def resolve_level(config: LoggingConfig, debug: int = 0, quiet: bool = False) -> int:
    """
    Pick the root log level.

    ``--debug`` wins over ``--quiet``, which wins over the configured level.
    """
    if debug:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    level = logging.getLevelName(config.level.upper())
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(config: LoggingConfig, debug: int = 0, quiet: bool = False) -> None:
    level = resolve_level(config, debug, quiet)
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=debug > 1,
        markup=False,
        rich_tracebacks=debug > 0,
    )
    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=[handler],
        force=True,
    )
