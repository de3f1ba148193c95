"""
Engine Logger

Logging for the decision engine. Every module logs through a child of the
``amas`` logger (``app_logger.getChild("engine")`` and so on), so a single
call to ``configure_logger`` decides where decision, store and metrics
records end up.

Records emitted while a decision is computed carry the learner and word
they belong to. ``with_context`` returns an adapter that stamps those ids on
the record as ``record.data``; ``JsonFormatter`` lifts them to the top level
of the emitted object so log shipping can filter by user.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
from typing import Any, Callable, Dict, Optional, TypeVar, Union

ROOT_LOGGER_NAME = "amas"

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Render a record as one JSON line.

    Decision context (``record.data``) is merged into the top level, after
    the fixed fields, so ``user_id`` and ``word_id`` sit next to ``message``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        if record.exc_info and record.exc_info[0] is not None:
            error_type, error, _ = record.exc_info
            entry["exception"] = {
                "type": error_type.__name__,
                "message": str(error),
                "traceback": self.formatException(record.exc_info),
            }

        context = getattr(record, "data", None)
        if isinstance(context, dict):
            entry.update(context)

        return json.dumps(entry, default=str)


def _formatter(use_json: bool) -> logging.Formatter:
    if use_json:
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT, DATE_FORMAT)


def _file_handler(log_file: str) -> Optional[logging.Handler]:
    directory = os.path.dirname(log_file)
    try:
        if directory:
            os.makedirs(directory, exist_ok=True)
        return logging.FileHandler(log_file)
    except OSError as e:
        logging.getLogger(ROOT_LOGGER_NAME).warning(f"Log file {log_file} unavailable, logging to console only: {e}")
        return None


def configure_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    (Re)configure a logger, replacing any handlers it already has.

    Args:
        name: Logger name (the engine root by default)
        level: Level name or number; unknown names fall back to INFO
        use_json: Emit JSON lines instead of text
        log_file: Also write to this file
        console_output: Write to stdout

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []
    formatter = _formatter(use_json)

    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handler = _file_handler(log_file)
        if handler is not None:
            handlers.append(handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


class LoggerAdapter(logging.LoggerAdapter):
    """
    Adapter that attaches decision context to every record.

    Context given per call through ``extra={"data": {...}}`` is kept and the
    adapter's own context is layered on top of it.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get('extra') or {})
        extra['data'] = {**(extra.get('data') or {}), **self.extra}
        return msg, {**kwargs, 'extra': extra}

    def with_context(self, **context) -> 'LoggerAdapter':
        """Adapter on the same logger with ``context`` added."""
        return LoggerAdapter(self.logger, {**self.extra, **context})


def with_context(name: Optional[str] = None, **context) -> LoggerAdapter:
    """
    Adapter carrying decision context, e.g. ``with_context(user_id=uid, word_id=wid)``.

    Args:
        name: Full logger name (the engine root logger when omitted)
        context: Fields stamped on every record
    """
    return LoggerAdapter(logging.getLogger(name) if name else app_logger, context)


def _app_logger_from_env() -> logging.Logger:
    """
    The engine root logger, configured from ``AMAS_LOG_LEVEL``,
    ``AMAS_LOG_JSON`` and ``AMAS_LOG_FILE`` unless it already has handlers.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if logger.handlers:
        return logger
    return configure_logger(
        level=os.environ.get("AMAS_LOG_LEVEL", "INFO"),
        use_json=os.environ.get("AMAS_LOG_JSON", "false").lower() in ("1", "true", "yes"),
        log_file=os.environ.get("AMAS_LOG_FILE"),
    )


app_logger = _app_logger_from_env()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Log how long each call of the decorated function takes, in milliseconds.

    Successful calls are logged at debug level; a failing call is logged at
    error level and its exception re-raised.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            log = logger or app_logger
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log.error(f"{func.__name__} failed after {(time.perf_counter() - start) * 1000:.1f} ms: {e}")
                raise
            log.debug(f"{func.__name__} took {(time.perf_counter() - start) * 1000:.1f} ms")
            return result
        return wrapper
    return decorator
