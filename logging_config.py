# logging_config.py
# Version 01.02.00.00 dated 20261017
# Logging setup shared by the embedding engine, its worker and the maintenance tool

"""
Every engine module logs through get_logger(__name__) and prefixes its
messages with the component name, e.g. "[PhotoEmbedder] Stored embedding ...".

Handlers installed by setup_logging():
- console: level chosen by the caller, optionally coloured
- rotating file: always DEBUG, so a sweep can be diagnosed after the fact
"""

import logging
import logging.handlers
import os
import sys
from typing import Dict, Optional

DEFAULT_LOG_FILE = "photo_embeddings_log.txt"

FILE_FORMAT = '%(asctime)s [%(levelname)s] [%(name)s:%(lineno)d] %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

# Top-level packages of the engine; set_log_level(engine_only=True) targets these
ENGINE_LOGGERS = ('config', 'repository', 'services', 'workers', 'embedding_tool')


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name when the stream is a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, fmt: str, use_colors: bool = True, stream=None):
        super().__init__(fmt)
        self._stream = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and self._stream_is_terminal()

    def _stream_is_terminal(self) -> bool:
        try:
            if sys.platform == 'win32':
                return os.getenv('TERM') is not None or 'ANSICON' in os.environ
            return hasattr(self._stream, 'isatty') and self._stream.isatty()
        except Exception:
            return False

    def format(self, record: logging.LogRecord) -> str:
        # Colour a copy; the same record also goes to the file handler
        if self.use_colors and record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = (
                f"{self.COLORS[record.levelname]}{record.levelname}{self.COLORS['RESET']}"
            )
        return super().format(record)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    use_colors: bool = True,
    context: Optional[Dict[str, object]] = None
) -> logging.Logger:
    """
    Install the console and rotating file handlers on the root logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        log_level: Console/root level name; unknown names fall back to INFO
        log_file: Log file path (default: DEFAULT_LOG_FILE in the working directory)
        console: Also log to stdout
        max_bytes: Rotate the file once it reaches this size
        backup_count: Rotated files to keep
        use_colors: Colour level names on a terminal
        context: Extra key/value lines for the startup banner (photo folder, database, ...)

    Returns:
        The root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(
            ColoredFormatter(CONSOLE_FORMAT, use_colors=use_colors, stream=sys.stdout)
        )
        root_logger.addHandler(console_handler)

    if log_file is None:
        log_file = os.path.join(os.getcwd(), DEFAULT_LOG_FILE)

    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root_logger.addHandler(file_handler)

    root_logger.info("=" * 80)
    root_logger.info(f"[Logging] Photo embedding engine started (level={logging.getLevelName(numeric_level)})")
    root_logger.info(f"[Logging] Log file: {log_file}")
    for key, value in (context or {}).items():
        root_logger.info(f"[Logging] {key}: {value}")
    root_logger.info("=" * 80)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as get_logger(__name__)."""
    return logging.getLogger(name)


def set_log_level(level: str, engine_only: bool = False):
    """
    Change the log level while running.

    With engine_only the root logger is left alone and only the engine's
    package loggers change, e.g. DEBUG for the engine while libraries stay quiet.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if engine_only:
        for name in ENGINE_LOGGERS:
            logging.getLogger(name).setLevel(numeric_level)
    else:
        logging.getLogger().setLevel(numeric_level)
    logging.getLogger(__name__).info(
        f"[Logging] Level set to {logging.getLevelName(numeric_level)}"
        f"{' for engine loggers' if engine_only else ''}"
    )


def disable_external_logging():
    """Quiet PIL's plugin chatter and Qt debug output; call after setup_logging()."""
    logging.getLogger('PIL').setLevel(logging.WARNING)
    logging.getLogger('PIL.PngImagePlugin').setLevel(logging.ERROR)
    logging.getLogger('PIL.TiffImagePlugin').setLevel(logging.ERROR)

    # Only matters when the PySide6 sweep worker runs
    os.environ.setdefault("QT_LOGGING_RULES", "*.debug=false;qt.qpa.*=false")
