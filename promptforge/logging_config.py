"""File logging for PromptForge.

Every module takes its logger from ``get_logger(__name__)``; the first
call attaches one rotating file handler to the ``promptforge`` logger.
The file lives under ~/.promptforge unless PROMPTFORGE_LOG_FILE points
elsewhere, and PROMPTFORGE_LOG_LEVEL sets the threshold.

The terminal only ever shows short user-facing messages. Failures are
logged here with the task, stage and error code so they can be traced.
When the log directory cannot be created the logger falls back to a
NullHandler.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
LOG_DIR = Path.home() / ".promptforge"
LOG_FILE = os.environ.get(
    "PROMPTFORGE_LOG_FILE",
    str(LOG_DIR / "promptforge.log"),
)
LOG_LEVEL = os.environ.get("PROMPTFORGE_LOG_LEVEL", "DEBUG")
MAX_BYTES = 10 * 1024 * 1024  # 10 MB per file
BACKUP_COUNT = 3  # Keep 3 rotated files

_initialized = False


def _ensure_log_dir() -> None:
    log_path = Path(LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)


def setup_logging() -> None:
    """Attach the rotating file handler once; later calls return immediately."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    root = logging.getLogger("promptforge")
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.DEBUG))

    # Handler may already exist if the module was reloaded
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return

    try:
        _ensure_log_dir()
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        # Read-only home directories (CI, sandboxes) still get a working logger
        root.addHandler(logging.NullHandler())
        return

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    root.info("Logging initialized -> %s (level=%s)", LOG_FILE, LOG_LEVEL)


def get_logger(name: str) -> logging.Logger:
    """Module logger under the ``promptforge`` hierarchy, with file logging set up."""
    setup_logging()
    return logging.getLogger(name)
