"""
Logging Setup
=============

Console + file logging for feature extraction runs.

Design Principles:
    - Rich-powered console handler on stderr, so feature arrays written to
      stdout by callers stay clean
    - Optional plain-text file handler named after the run
      (``extract_20260101_120000.log``), for calibration jobs on many images
    - Every ``cnnfeat`` module logs on import through ``get_logger``, which
      installs a default console handler; ``configure_logging`` may be
      called afterwards (e.g. from the CLI once the config is read) and
      replaces the handlers installed before
    - Pipe-delimited key=value messages (``"geometry | layers=conv5 cell=(16, 16)"``)

Usage::

    from cnnfeat.utils.logging import configure_logging, get_logger

    configure_logging("DEBUG", log_dir="logs", run_name="fit-pca")
    logger = get_logger(__name__)
    logger.info("calibration | pca 256 -> 64 on 50000 cells")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

PLAIN_FORMAT = "[%(asctime)s] %(levelname)-7s %(name)s - %(message)s"

_console = Console(stderr=True)
_handlers: list[logging.Handler] = []
_log_file: Optional[Path] = None


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str | Path] = None,
    run_name: str = "cnnfeat",
) -> Optional[Path]:
    """Install the console handler and, with ``log_dir``, a file handler.

    Handlers from a previous call are removed (and the file closed), so
    the level and destination of the last call win.

    Parameters
    ----------
    level : str
        DEBUG, INFO, WARNING or ERROR.
    log_dir : str or Path or None
        Directory for the log file, created if needed.
    run_name : str
        Prefix of the log file name (``<run_name>_<timestamp>.log``).

    Returns
    -------
    Path or None
        The log file, if one was opened.
    """
    global _log_file

    root = logging.getLogger()
    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()
    _log_file = None

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = RichHandler(
        console=_console,
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console_handler)
    _handlers.append(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        _log_file = log_dir / f"{run_name}_{ts}.log"
        fh = logging.FileHandler(_log_file, encoding="utf-8")
        fh.setFormatter(logging.Formatter(PLAIN_FORMAT))
        root.addHandler(fh)
        _handlers.append(fh)

    return _log_file


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Logger for a ``cnnfeat`` module; installs the default console handler once."""
    if not _handlers:
        configure_logging()

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger
