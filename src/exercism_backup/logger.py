import json
import logging
import os
import sys

_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# -v / -q steps from the default INFO level
_VERBOSITY_LEVELS = [
    logging.CRITICAL,
    logging.ERROR,
    logging.WARNING,
    logging.INFO,
    logging.DEBUG,
]
_DEFAULT_VERBOSITY_INDEX = _VERBOSITY_LEVELS.index(logging.INFO)


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def resolve_log_level(
    debug: bool = False, verbosity: int = 0, default_level: str = "INFO"
) -> int:
    """Compute the effective log level.

    Args:
        debug: Force DEBUG.
        verbosity: Number of ``-v`` flags minus number of ``-q`` flags.
            When zero, the LOG_LEVEL environment variable applies.
        default_level: Level used when LOG_LEVEL is not set.
    """
    if debug:
        return logging.DEBUG
    if verbosity == 0:
        env_level = (os.getenv("LOG_LEVEL") or default_level).upper()
        return getattr(logging, env_level, logging.INFO)
    index = _DEFAULT_VERBOSITY_INDEX + verbosity
    index = max(0, min(index, len(_VERBOSITY_LEVELS) - 1))
    return _VERBOSITY_LEVELS[index]


def setup_logging(
    debug: bool = False,
    verbosity: int = 0,
    log_file: str | None = None,
    log_format: str = "text",
    default_level: str = "INFO",
) -> None:
    """
    Configure logging for the command-line tool.

    Log records go to stderr; when a log_file is specified they are also
    appended to that file.

    Args:
        debug: If True, overrides LOG_LEVEL and verbosity to DEBUG.
        verbosity: ``-v`` count minus ``-q`` count.
        log_file: Optional log file path.
        log_format: "text" (default) or "json" for structured output.
        default_level: Level used when neither verbosity nor LOG_LEVEL is set.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR) used when
                   no verbosity flag is given. Default: INFO.
    """
    log_level = resolve_log_level(debug, verbosity, default_level)

    def _formatter(fmt: str) -> logging.Formatter:
        if log_format == "json":
            return JsonFormatter(datefmt=_DATE_FORMAT)
        return logging.Formatter(fmt, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = []
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(_TEXT_FORMAT))
    handlers.append(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(_formatter(_FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)
