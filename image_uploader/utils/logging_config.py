"""Logging setup for the image uploader CLI and pipeline.

Every line carries the edit session it belongs to, or ``-`` when logged
outside a session. ``LoggingContext`` supplies the session id.
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(session_id)s] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

NO_SESSION = "-"

# Third-party loggers that only log at WARNING and above
NOISY_LOGGERS = ('httpx', 'httpcore', 'aiohttp', 'PIL')


class SessionFilter(logging.Filter):
    """Give records logged outside a session a placeholder session id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = NO_SESSION
        return True


def _file_handler(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setLevel(level)
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_dir: str = "logs",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
):
    """Configure the root logger.

    Console output goes to stderr so stdout holds only CLI results. With
    ``log_to_file`` a dated rotating log and an error-only log are written
    under ``log_dir`` as well.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        log_to_file: Whether to log to files too
        log_dir: Directory for log files
        max_bytes: Size at which a log file rotates
        backup_count: Rotated files kept per log
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    handlers: List[logging.Handler] = [console]

    if log_to_file:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d')
        handlers.append(_file_handler(
            directory / f"image_uploader_{stamp}.log", level, max_bytes, backup_count
        ))
        handlers.append(_file_handler(
            directory / f"image_uploader_errors_{stamp}.log", logging.ERROR, max_bytes, backup_count
        ))

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    session_filter = SessionFilter()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(session_filter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={log_level}, file_logging={log_to_file}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggingContext:
    """Stamp extra attributes, such as ``session_id``, onto records created inside the block."""

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context
        self._previous_factory = None

    def __enter__(self):
        previous = self._previous_factory = logging.getLogRecordFactory()
        context = dict(self.context)

        def stamped(*args, **kwargs):
            record = previous(*args, **kwargs)
            record.__dict__.update(context)
            return record

        logging.setLogRecordFactory(stamped)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logging.setLogRecordFactory(self._previous_factory)
