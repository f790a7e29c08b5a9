"""
Logging setup for command-line entry points.

Library modules only call logging.getLogger(__name__); the CLI installs a
rich handler on stderr so log lines never mix with JSON on stdout.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: int = logging.INFO) -> None:
    """Attach a RichHandler to the root logger.

    Args:
        level: Numeric log level, e.g. LoggingConfig.level_number
    """
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
