"""
Issues and verifies signed flow ids.

A flow id is a random hex prefix followed by the first 16 bytes (32 hex
characters) of an HMAC-SHA256 over the prefix, the flow begin time (hex) and
the client's user agent, joined with newlines. A client can therefore only
present a flow id that this service handed out, from the same user agent,
within ``max_age`` milliseconds of the flow beginning.
"""

import hashlib
import hmac
import secrets
import time
from typing import Any, Mapping, Optional, Tuple, Union

from .domain import MetricsContext
from .log import MetricsLog

SIGNATURE_LENGTH = 32
"""Hex characters of the truncated signature at the end of a flow id."""

PREFIX_BYTES = 16

Secret = Union[str, bytes]


def now() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def _sign(secret: Secret, prefix: str, flow_begin_time: int,
          user_agent: str) -> str:
    if isinstance(secret, str):
        secret = secret.encode('utf-8')
    message = '\n'.join([prefix, format(flow_begin_time, 'x'), user_agent])
    digest = hmac.new(secret, message.encode('utf-8'), hashlib.sha256)
    return digest.hexdigest()[:SIGNATURE_LENGTH]


def issue(secret: Secret, user_agent: str,
          flow_begin_time: Optional[int] = None) -> Tuple[str, int]:
    """
    Start a new flow.

    Parameters
    ----------
    secret : str or bytes
        The flow signing key.
    user_agent : str
        User agent of the client that begins the flow.
    flow_begin_time : int
        Epoch milliseconds; defaults to now.

    Returns
    -------
    str
        The signed flow id.
    int
        The flow begin time.

    """
    if flow_begin_time is None:
        flow_begin_time = now()
    prefix = secrets.token_hex(PREFIX_BYTES)
    return prefix + _sign(secret, prefix, flow_begin_time, user_agent), \
        flow_begin_time


def validate(flow_id: Optional[str], flow_begin_time: Optional[int],
             user_agent: Optional[str], secret: Secret, max_age: int,
             log: Optional[MetricsLog] = None,
             current_time: Optional[int] = None) -> bool:
    """
    Check that a flow id was issued by us and has not expired.

    Never raises; each reason for rejection is logged under op
    ``flow.validate`` so that the caller only has to decide what to do with
    a ``False``.

    Parameters
    ----------
    flow_id : str
    flow_begin_time : int
        Epoch milliseconds.
    user_agent : str
    secret : str or bytes
    max_age : int
        Milliseconds.
    log : :class:`.MetricsLog`
    current_time : int
        Epoch milliseconds; defaults to now.

    Returns
    -------
    bool

    """
    log = log or MetricsLog()
    if not flow_id:
        return _reject(log, 'missing_flow_id')
    if not flow_begin_time:
        return _reject(log, 'missing_flow_begin_time')
    if current_time is None:
        current_time = now()
    try:
        if current_time - flow_begin_time > max_age:
            return _reject(log, 'expired')
        if not isinstance(flow_id, str) or len(flow_id) <= SIGNATURE_LENGTH:
            return _reject(log, 'invalid_signature')
        prefix = flow_id[:-SIGNATURE_LENGTH]
        signature = flow_id[-SIGNATURE_LENGTH:]
        expected = _sign(secret, prefix, flow_begin_time, user_agent or '')
        if not hmac.compare_digest(expected.encode('utf-8'),
                                   signature.encode('utf-8')):
            return _reject(log, 'invalid_signature')
    except (TypeError, ValueError):
        return _reject(log, 'invalid_signature')
    log.info('flow.validate', reason='valid')
    return True


def validate_context(metadata: Optional[MetricsContext],
                     user_agent: Optional[str], secret: Secret, max_age: int,
                     log: Optional[MetricsLog] = None,
                     current_time: Optional[int] = None) -> bool:
    """Validate the flow carried by a whole :class:`.MetricsContext`."""
    log = log or MetricsLog()
    if metadata is None:
        return _reject(log, 'missing_context')
    return validate(metadata.flow_id, metadata.flow_begin_time, user_agent,
                    secret, max_age, log=log, current_time=current_time)


def _reject(log: MetricsLog, reason: str) -> bool:
    log.info('flow.validate', reason=reason)
    return False


class FlowValidator(object):
    """Binds the flow signing key and maximum age for request handlers."""

    def __init__(self, secret: Secret, max_age: int,
                 log: Optional[MetricsLog] = None) -> None:
        self._secret = secret
        self.max_age = max_age
        self.log = log or MetricsLog()

    @classmethod
    def from_config(cls, config: Mapping[str, Any],
                    log: Optional[MetricsLog] = None) -> 'FlowValidator':
        """Get a validator configured with ``FLOW_ID_KEY`` and expiry."""
        return cls(config['FLOW_ID_KEY'],
                   int(config.get('FLOW_ID_EXPIRY', 2 * 60 * 60 * 1000)),
                   log=log)

    def issue(self, user_agent: str) -> Tuple[str, int]:
        """Start a new flow for ``user_agent``."""
        return issue(self._secret, user_agent)

    def validate(self, metadata: Optional[MetricsContext],
                 user_agent: Optional[str]) -> bool:
        """Check the flow carried by ``metadata``."""
        return validate_context(metadata, user_agent, self._secret,
                                self.max_age, log=self.log)
