"""Logging setup: stdlib logging rendered through rich."""

import logging

from rich.logging import RichHandler

_QUIET_LOGGERS = ("httpx", "httpcore", "chromadb", "googleapiclient.discovery_cache", "urllib3")


def configure_logging(level: str = "INFO") -> None:
    """Install a single RichHandler on the root logger at `level`.

    Safe to call more than once; previous handlers are replaced.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
