"""
Proxy Announcer Logging
Console or JSON log lines tagged with the lifecycle event being dispatched
"""

import json
import logging
import logging.config
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Fields dispatcher log calls pass through ``extra=``
DISPATCH_FIELDS = ('intent', 'attempt', 'status_code')

# Loggers configured by setup_logging; the host's root logger is left alone
PACKAGE_LOGGERS = ('announcer', 'monitoring')

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

CONSOLE_FORMAT = '%(asctime)s %(levelname)-7s %(name)s [%(server)s %(event_id)s] %(message)s'


class LifecycleContext:
    """
    Marks the lifecycle event the current thread is dispatching.

    Log lines emitted inside the block carry the event name, an event ID
    of the form ``<event>-<8 hex chars>`` and the announced server name.
    """

    _current: ContextVar[Optional['LifecycleContext']] = ContextVar(
        'announcer_lifecycle_event', default=None
    )

    def __init__(self, event: str, server: Optional[str] = None, eid: Optional[str] = None):
        self.event = event
        self.server = server
        self.eid = eid or f"{event}-{uuid.uuid4().hex[:8]}"
        self._token = None

    def __enter__(self) -> str:
        self._token = self._current.set(self)
        return self.eid

    def __exit__(self, *args):
        self._current.reset(self._token)

    @classmethod
    def active(cls) -> Optional['LifecycleContext']:
        return cls._current.get()

    @classmethod
    def get_current(cls) -> str:
        """Event ID of the active lifecycle event, or '' outside one"""
        context = cls._current.get()
        return context.eid if context else ''


class LifecycleFilter(logging.Filter):
    """Copy the active lifecycle event onto records for %-style formats"""

    def filter(self, record):
        context = LifecycleContext.active()
        record.event_id = context.eid if context else '-'
        record.server = (context.server if context else None) or '-'
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Always present: timestamp, level, logger, message, thread and the
    static fields given at construction. Inside a LifecycleContext the
    event, event_id and server are added, and dispatch fields are added
    when a log call passes them via ``extra=``.
    """

    def __init__(self, **static_fields):
        super().__init__()
        self.static_fields = static_fields

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc)
                                 .isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'thread': record.threadName,
        }
        data.update(self.static_fields)

        context = LifecycleContext.active()
        if context is not None:
            data['event'] = context.event
            data['event_id'] = context.eid
            if context.server:
                data['server'] = context.server

        for name in DISPATCH_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                data[name] = value

        if record.exc_info:
            data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info),
            }

        return json.dumps(data, default=str)


def build_logging_config(service_name: str = 'announcer',
                         log_level: str = 'INFO',
                         log_format: str = 'console',
                         log_file: Optional[str] = None) -> Dict[str, Any]:
    """
    dictConfig schema for the announcer's own loggers.

    Args:
        service_name: Announced server name, added to every JSON line
        log_level: Level name for the package loggers
        log_format: 'json' or 'console'
        log_file: Also write to this rotating file
    """
    if log_format not in ('json', 'console'):
        raise ValueError(f"Unknown log format: {log_format}")

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers = {
        'stderr': {
            'class': 'logging.StreamHandler',
            'formatter': log_format,
            'filters': ['lifecycle'],
            'stream': 'ext://sys.stderr',
        }
    }
    if log_file:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'formatter': log_format,
            'filters': ['lifecycle'],
            'filename': log_file,
            'maxBytes': LOG_FILE_MAX_BYTES,
            'backupCount': LOG_FILE_BACKUPS,
            'encoding': 'utf-8',
        }

    loggers = {
        name: {'level': level, 'handlers': list(handlers), 'propagate': False}
        for name in PACKAGE_LOGGERS
    }
    loggers['urllib3'] = {'level': logging.WARNING}

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'filters': {
            'lifecycle': {'()': LifecycleFilter},
        },
        'formatters': {
            'json': {'()': JSONFormatter, 'service': service_name},
            'console': {'format': CONSOLE_FORMAT, 'datefmt': '%Y-%m-%d %H:%M:%S'},
        },
        'handlers': handlers,
        'loggers': loggers,
    }


def setup_logging(service_name: str = 'announcer',
                  log_level: str = 'INFO',
                  log_format: str = 'console',
                  log_file: Optional[str] = None):
    """Apply build_logging_config"""
    logging.config.dictConfig(
        build_logging_config(service_name, log_level, log_format, log_file)
    )
    logging.getLogger(__name__).debug(
        f"Logging configured: level={log_level}, format={log_format}, file={log_file}"
    )
