"""Process-wide logging setup for the API server and the CLI."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "supabase": logging.WARNING,
    "postgrest": logging.WARNING,
}


def configure_logging_filters() -> None:
    """Reduce log noise from verbose dependencies."""
    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> None:
    """Console handler always; rotating file handler when LOG_DIR is set. Safe to call twice."""
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(lvl)
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if not any(getattr(h, "_adaptive", False) for h in root_logger.handlers):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(fmt)
        console._adaptive = True  # type: ignore[attr-defined]
        root_logger.addHandler(console)

        directory = log_dir or os.getenv("LOG_DIR")
        if directory:
            path = Path(directory)
            path.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path / "adaptive.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(fmt)
            file_handler._adaptive = True  # type: ignore[attr-defined]
            root_logger.addHandler(file_handler)

    configure_logging_filters()
