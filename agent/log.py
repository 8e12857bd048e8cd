"""Process-wide logging setup for the entry points."""

import logging
import os


def configure_logging(log_dir: str, level: str = "INFO") -> logging.Logger:
    """Attach a file handler and a console handler to the root logger once."""
    os.makedirs(log_dir, exist_ok=True)
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))

    log_path = os.path.abspath(os.path.join(log_dir, "agent.log"))
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    has_file = any(
        isinstance(h, logging.FileHandler) and h.baseFilename == log_path
        for h in root.handlers
    )
    if not has_file:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(formatter)
        root.addHandler(handler)

    has_console = any(
        type(h) is logging.StreamHandler for h in root.handlers
    )
    if not has_console:
        console = logging.StreamHandler()
        console.setLevel(logging.WARNING)
        console.setFormatter(formatter)
        root.addHandler(console)

    return root
