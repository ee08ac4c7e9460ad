"""Structured logging for flow metrics and account activity events."""

import logging
from typing import Any, Mapping, Optional

from pythonjsonlogger.json import JsonFormatter

from .domain import Request

LOGGER_NAME = 'account_metrics'


def setup_logger(level: str = 'INFO') -> logging.Logger:
    """Send this package's log records to stderr as JSON."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


class MetricsLog(object):
    """
    Log sink shared by the flow, context and device modules.

    Every record carries an ``op`` field so that the JSON output can be
    filtered by operation. Counters and activity events are log records too;
    downstream tooling aggregates them.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def error(self, op: str, err: Any = None, **fields: Any) -> None:
        """Log a failed operation along with the underlying error."""
        self.logger.error(op, extra={'op': op, 'err': str(err),
                                     'data': fields})

    def info(self, op: str, **fields: Any) -> None:
        self.logger.info(op, extra={'op': op, 'data': fields})

    def increment(self, stat: str) -> None:
        """Increment the counter named ``stat``."""
        self.logger.info(stat, extra={'op': 'increment', 'stat': stat})

    def activity_event(self, event: str, request: Request,
                       data: Mapping[str, Any]) -> None:
        """
        Log an account lifecycle event.

        Parameters
        ----------
        event : str
            E.g. ``account.created`` or ``device.updated``.
        request : :class:`.Request`
            The request that caused the event.
        data : dict
            Event attributes; always includes ``uid``.

        """
        self.logger.info(event, extra={
            'op': 'activityEvent',
            'event': event,
            'userAgent': request.user_agent,
            'data': dict(data)
        })
