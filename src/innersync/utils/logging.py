"""Logging setup for the sync service.

structlog turns each event into one message line. The stdlib handlers then
colour it for the console (colorlog) and append it to a rotating log file.
"""

import functools
import inspect
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import colorlog
from structlog.typing import Processor


LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

CONSOLE_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s [%(name)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Loggers that report every filesystem poll or request at INFO
QUIET_LOGGERS = ("watchfiles",)

_HANDLER_MARKER = "_innersync_handler"


def render_event_line(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> str:
    """Render ``event key=value ...`` with any traceback on the following lines."""
    event = event_dict.pop("event", "")
    exception = event_dict.pop("exception", None)

    fields = " ".join(f"{key}={value}" for key, value in event_dict.items())
    line = f"{event} {fields}" if fields else str(event)
    if exception:
        line = f"{line}\n{exception}"
    return line


def build_processors(format_type: str) -> List[Processor]:
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors[1:1] = [
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ]
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(render_event_line)
    return processors


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure structlog and the root handlers.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than stacked.
    """
    from ..config.settings import get_settings

    settings = get_settings().logging

    level_name = (log_level or settings.level).upper()
    level = getattr(logging, level_name, logging.INFO)
    format_type = log_format or settings.format
    file_path = log_file or settings.file_path

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=build_processors(format_type),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _install(root, console_handler(level, format_type))
    if file_path:
        _install(root, file_handler(file_path, level, format_type))


def console_handler(level: int, format_type: str = "console") -> logging.Handler:
    """Coloured stdout handler. JSON lines are written uncoloured."""
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if format_type == "json":
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler.setFormatter(colorlog.ColoredFormatter(
            CONSOLE_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
            reset=True,
            log_colors=LOG_COLORS
        ))
    return handler


def file_handler(file_path: str, level: int, format_type: str = "console") -> logging.Handler:
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s" if format_type == "json" else FILE_FORMAT))
    return handler


def _install(root: logging.Logger, handler: logging.Handler) -> None:
    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_duration(func):
    """Log how long a call took, for plain and coroutine functions alike.

    Successful calls are logged at debug level. Failures are logged at
    warning level with the elapsed time and re-raised.
    """
    logger = get_logger(func.__module__)

    def report(started: float, error: Optional[BaseException] = None) -> None:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        if error is None:
            logger.debug("Call finished", call=func.__qualname__, elapsed_ms=elapsed_ms)
        else:
            logger.warning(
                "Call failed",
                call=func.__qualname__,
                elapsed_ms=elapsed_ms,
                error=str(error) or type(error).__name__
            )

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            report(started, e)
            raise
        report(started)
        return result

    return wrapper
