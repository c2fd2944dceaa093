"""
Logging configuration for Offline Edge.

Routes structlog through the standard library so every component logs
through one set of handlers, and attaches the id of the runtime event
being handled to each record.
"""

import logging
import json
import sys
import os
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import uuid4
import traceback
from contextvars import ContextVar
from pathlib import Path

import structlog

# Context variables for event correlation
event_id: ContextVar[Optional[str]] = ContextVar('event_id', default=None)
event_kind: ContextVar[Optional[str]] = ContextVar('event_kind', default=None)

THIRD_PARTY_LOGGERS = {
    'uvicorn': logging.WARNING,
    'fastapi': logging.WARNING,
    'aiohttp': logging.WARNING,
    'sqlalchemy': logging.WARNING,
    'aiosqlite': logging.WARNING,
    'redis': logging.WARNING,
}


class EventContextFilter(logging.Filter):
    """Add the current runtime event to log records."""

    def filter(self, record):
        record.event_id = event_id.get() or 'none'
        record.event_kind = event_kind.get() or 'none'
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    RESERVED = set(logging.LogRecord('', 0, '', 0, '', (), None).__dict__) | {'message', 'asctime'}

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'event_id': getattr(record, 'event_id', 'none'),
            'event_kind': getattr(record, 'event_kind', 'none'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key in self.RESERVED or key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in JSONFormatter.RESERVED and not key.startswith('_')
            and key not in ('event_id', 'event_kind')
        }
        context = ' '.join(f"{key}={value}" for key, value in extras.items())
        event_info = f"[{getattr(record, 'event_kind', 'none')}:{getattr(record, 'event_id', 'none')[:8]}]"
        return f"{color}{formatted}{self.RESET} {event_info} {context}".rstrip()


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'json',
        log_file: Optional[str] = None,
        console_output: bool = True,
    ):
        """
        Setup logging for the stdlib root logger and structlog.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'standard'
            log_file: Optional log file path
            console_output: Enable console output
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        event_filter = EventContextFilter()

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(cls._build_formatter(format_type))
            console_handler.addFilter(event_filter)
            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())  # Always use JSON for files
            file_handler.addFilter(event_filter)
            root_logger.addHandler(file_handler)

        for logger_name, third_party_level in THIRD_PARTY_LOGGERS.items():
            logging.getLogger(logger_name).setLevel(third_party_level)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.format_exc_info,
                structlog.stdlib.render_to_log_kwargs,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        structlog.get_logger(__name__).info(
            "Logging system initialized",
            level=level,
            format_type=format_type,
            log_file=log_file,
        )

    @classmethod
    def _build_formatter(cls, format_type: str) -> logging.Formatter:
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored':
            return ColoredFormatter(cls.DEFAULT_FORMAT)
        return logging.Formatter(cls.DEFAULT_FORMAT)


class EventContext:
    """Context manager that tags log records with the runtime event being handled."""

    def __init__(self, kind: str, event_id_value: str = None):
        self.kind = kind
        self.event_id_value = event_id_value or str(uuid4())
        self._id_token = None
        self._kind_token = None

    def __enter__(self):
        self._id_token = event_id.set(self.event_id_value)
        self._kind_token = event_kind.set(self.kind)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        event_id.reset(self._id_token)
        event_kind.reset(self._kind_token)


def get_event_id() -> Optional[str]:
    """Get the id of the event currently being handled."""
    return event_id.get()


def initialize_logging(level: Optional[str] = None, format_type: Optional[str] = None,
                       log_file: Optional[str] = None):
    """Initialize logging from arguments or the environment."""
    environment = os.getenv('ENVIRONMENT', 'development')
    level = level or os.getenv('LOG_LEVEL', 'INFO')

    if format_type is None:
        format_type = 'json' if environment == 'production' else 'colored'

    LoggingConfig.setup_logging(
        level=level,
        format_type=format_type,
        log_file=log_file,
        console_output=True,
    )

