"""Process-wide logging.

setup_logging() is called once per process (API server, resync runner) and
returns the application logger that is then handed to every component through
HelperConfig. Console output is coloured on demand, the log file under
{ROOT_DIR}/logs is plain text and rotated.
"""

import copy
import logging
import logging.config
import os
from datetime import datetime
from functools import partialmethod
from logging import Logger

from pytz import timezone

APP_LOGGER_NAME = "rag_assistant"

LOG_FORMAT = "%(asctime)s - %(levelname)-7s - %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

_ANSI_RESET = "\033[0m"
_ANSI_COLORS: dict[str, str] = {
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
}
# used when a warning or error carries no explicit color
_LEVEL_COLORS: dict[int, str] = {
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}

# third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "watchfiles", "pypdf", "sqlalchemy.engine")

# pypdf reports recoverable structure problems of malformed PDFs as warnings
_PYPDF_NOISE = (
    "Ignoring wrong pointing object",
    "Multiple definitions in dictionary",
    "incorrect startxref pointer",
)


def _resolve_level() -> int:
    level_name = os.getenv("LOG_LEVEL", "info").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


class PdfNoiseFilter(logging.Filter):
    """Drop recoverable pypdf warnings that would otherwise flood the log on bulk ingestion."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("pypdf") or record.levelno >= logging.ERROR:
            return True
        message = str(record.msg)
        return not any(noise in message for noise in _PYPDF_NOISE)


class TimezoneFormatter(logging.Formatter):
    """Formats timestamps in the configured TIMEZONE instead of server local time."""

    def __init__(self, tz_name: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record: logging.LogRecord) -> str:
        try:
            return super().format(record)
        except (TypeError, ValueError):
            # a third-party call with mismatched %-args; log the raw template instead of losing the line
            fallback = copy.copy(record)
            fallback.msg, fallback.args = str(record.msg), ()
            return super().format(fallback)


class ConsoleFormatter(TimezoneFormatter):
    """Colours a line by its ``color`` attribute, or by level for warnings and errors."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color_name = getattr(record, "color", None) or _LEVEL_COLORS.get(record.levelno)
        ansi = _ANSI_COLORS.get(color_name or "")
        return f"{ansi}{line}{_ANSI_RESET}" if ansi else line


class ColorLogger:
    """Logger wrapper whose level methods accept an optional ``color=`` keyword.

        logger.info("Indexed '%s'", filename, color="green")

    The colour only affects the console; the log file stays plain text.
    Everything else (setLevel, handlers, isEnabledFor, ...) is delegated to
    the wrapped logger.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def log(self, level: int, msg, *args, color: str | None = None, **kwargs) -> None:
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        kwargs.setdefault("stacklevel", 2)
        self._logger.log(level, msg, *args, **kwargs)

    def _log_at(self, level: int, msg, *args, color: str | None = None, **kwargs) -> None:
        kwargs.setdefault("stacklevel", 3)
        self.log(level, msg, *args, color=color, **kwargs)

    debug = partialmethod(_log_at, logging.DEBUG)
    info = partialmethod(_log_at, logging.INFO)
    warning = partialmethod(_log_at, logging.WARNING)
    error = partialmethod(_log_at, logging.ERROR)
    critical = partialmethod(_log_at, logging.CRITICAL)

    def exception(self, msg, *args, color: str | None = None, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._log_at(logging.ERROR, msg, *args, color=color, **kwargs)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def setup_logging() -> ColorLogger:
    """Configure console and rotating file logging and return the application logger."""
    root_dir = os.getenv("ROOT_DIR") or os.getcwd()
    log_dir = os.path.join(root_dir, "logs")
    os.makedirs(log_dir, exist_ok=True)
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")
    level = _resolve_level()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "pdf_noise": {"()": PdfNoiseFilter},
        },
        "formatters": {
            "file": {
                "()": TimezoneFormatter,
                "fmt": LOG_FORMAT,
                "datefmt": LOG_DATE_FORMAT,
                "tz_name": tz_name,
            },
            "console": {
                "()": ConsoleFormatter,
                "fmt": LOG_FORMAT,
                "datefmt": LOG_DATE_FORMAT,
                "tz_name": tz_name,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "filters": ["pdf_noise"],
                "level": level,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "file",
                "filters": ["pdf_noise"],
                "level": level,
                "filename": os.path.join(log_dir, "rag_assistant.log"),
                "maxBytes": LOG_FILE_MAX_BYTES,
                "backupCount": LOG_FILE_BACKUPS,
                "encoding": "utf-8",
            },
        },
        "root": {
            "handlers": ["console", "file"],
            "level": level,
        },
    })

    # third-party request and change logs only in debug mode
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    return ColorLogger(logging.getLogger(APP_LOGGER_NAME))
