from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", quiet: bool = False) -> None:
    """Route ``voicefleet.*`` and discord.py loggers through a rich stderr handler."""
    logging.basicConfig(
        level=logging.WARNING if quiet else level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # the gateway client is chatty at INFO
    logging.getLogger("discord").setLevel(logging.WARNING)
