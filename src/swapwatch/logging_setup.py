from __future__ import annotations
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_is_logging_configured = False

NOISY = ("httpx", "httpcore", "hpack", "websockets")


def setup_logging(level: str | int = "INFO", log_file: str | Path | None = None,
                  console: Console | None = None) -> logging.Logger:
    """Configure the root logger once: rich console output plus an optional plain file."""
    global _is_logging_configured
    root = logging.getLogger()
    if _is_logging_configured:
        root.setLevel(level if isinstance(level, int) else level.upper())
        return root

    rich_handler = RichHandler(console=console or Console(stderr=True), rich_tracebacks=True,
                               show_path=False, log_time_format="%H:%M:%S")
    rich_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(rich_handler)

    if log_file is not None:
        p = Path(log_file)
        p.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(p, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root.addHandler(file_handler)

    root.setLevel(level if isinstance(level, int) else level.upper())
    for name in NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)

    _is_logging_configured = True
    return root
