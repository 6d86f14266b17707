"""
Structured Logging Configuration

Provides:
- JSON lines for production log shipping
- Colorized console output for development
- Timing decorator for sync and async entry points

Retrieval code attaches context through `extra`; the fields the engine
uses consistently are owner_id, project_id, phase and duration_ms.

Usage:
    from core.config import load_config
    from core.logging_config import configure_logging, get_logger

    # At startup
    configure_logging(load_config().logging)

    # In modules
    logger = get_logger(__name__)
    logger.info('Cache refreshed', extra={'owner_id': 'user-1', 'entries': 42})
"""

import inspect
import logging
import json
import os
import sys
import traceback
import time
from datetime import datetime, timezone
from functools import wraps

# Attributes every LogRecord carries; anything else came in through `extra`
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord('', logging.INFO, '', 0, '', (), None))
) | {'message', 'asctime'}

# Loggers that are noisy at INFO when the embedding client is busy
_QUIET_LOGGERS = ('httpx', 'httpcore', 'openai')


def extra_fields(record):
    """Return the caller-supplied `extra` attributes of a record."""
    return {
        key: value for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith('_')
    }


# =============================================================================
# Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            'timestamp': created.isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(extra_fields(record))

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'traceback': traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Human-readable console lines.

    Layout: time, level, optional [owner_id], logger, message, then
    any phase and (duration) suffix.
    """

    LEVEL_COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[1;31m',
    }
    DIM = '\033[2m'
    RESET = '\033[0m'

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, '')
        stamp = time.strftime('%H:%M:%S', time.localtime(record.created))
        fields = extra_fields(record)

        line = f'{self.DIM}{stamp}{self.RESET} {color}{record.levelname:<8}{self.RESET}'
        if 'owner_id' in fields:
            line += f" [{fields['owner_id']}]"
        line += f' {record.name}: {record.getMessage()}'

        if 'phase' in fields:
            line += f" {self.DIM}<{fields['phase']}>{self.RESET}"
        if 'duration_ms' in fields:
            line += f" ({fields['duration_ms']}ms)"

        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


# =============================================================================
# Setup
# =============================================================================

def setup_logging(level='INFO', json_format=None, stream=None):
    """
    Install a single console handler on the root logger.

    Args:
        level: Level name or number
        json_format: JSON lines when True. When None, JSON is used unless
            RETRIEVAL_ENV is set to "development".
        stream: Output stream (stdout by default)

    Returns:
        The root logger
    """
    if json_format is None:
        json_format = os.getenv('RETRIEVAL_ENV', 'production') != 'development'

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else ColoredFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root.debug(
        'Logging configured',
        extra={'log_format': 'json' if json_format else 'console', 'log_level': logging.getLevelName(level)}
    )
    return root


def configure_logging(logging_config, stream=None):
    """Apply the `logging` section of a RetrievalConfig."""
    return setup_logging(
        level=logging_config.level,
        json_format=logging_config.json_format,
        stream=stream,
    )


def get_logger(name):
    """Get a logger with the given name."""
    return logging.getLogger(name)


# =============================================================================
# Performance Logging
# =============================================================================

def log_performance(logger_name=None):
    """
    Decorator that logs elapsed time at DEBUG, or the failure at ERROR.

    Usage:
        @log_performance('retrieval.rag_query')
        async def rag_query(self, query):
            ...
    """
    def decorator(func):
        logger = get_logger(logger_name or func.__module__)

        def report(started, error=None):
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            fields = {'function': func.__name__, 'duration_ms': elapsed_ms}
            if error is None:
                logger.debug(f'{func.__name__} completed', extra=fields)
            else:
                fields['error_type'] = type(error).__name__
                logger.error(f'{func.__name__} failed: {error}', extra=fields)

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def timed_coroutine(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(started, e)
                    raise
                report(started)
                return result
            return timed_coroutine

        @wraps(func)
        def timed(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        return timed

    return decorator
